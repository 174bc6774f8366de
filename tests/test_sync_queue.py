import asyncio
import json

import pytest

from intake.schemas.submission import SubmissionStatus
from intake.services.sync_queue import SyncQueue, SyncScheduler

from conftest import make_submission


async def _pending(local_store):
    submission = make_submission()
    await local_store.upsert(submission)
    return submission


@pytest.mark.asyncio
async def test_enqueue_is_idempotent(queue, local_store) -> None:
    submission = await _pending(local_store)

    assert await queue.enqueue(submission.id, "timeout") is True
    assert await queue.enqueue(submission.id, "timeout again") is False

    assert len(queue) == 1
    item = queue.get(submission.id)
    assert item.attempts == 0
    assert item.error == "timeout"


@pytest.mark.asyncio
async def test_new_items_wait_for_initial_delay(queue, local_store, remote, clock) -> None:
    submission = await _pending(local_store)
    await queue.enqueue(submission.id)

    report = await queue.drain()
    assert report.processed == 0
    assert remote.write_calls == []

    clock.advance(61)
    report = await queue.drain()
    assert report.succeeded == 1
    assert submission.id not in queue


@pytest.mark.asyncio
async def test_drain_success_marks_submission_synced(queue, local_store, remote) -> None:
    remote.available = False
    submission = await _pending(local_store)
    await queue.enqueue(submission.id)

    remote.available = True
    report = await queue.drain(force=True)

    assert report.succeeded == 1
    assert len(queue) == 0
    stored = await local_store.get(submission.id)
    assert stored.status is SubmissionStatus.SYNCED
    assert stored.synced_to_remote is True
    assert submission.id in remote.records


@pytest.mark.asyncio
async def test_backoff_grows_until_cap_then_gives_up(queue, local_store, remote, clock) -> None:
    remote.available = False
    submission = await _pending(local_store)
    await queue.enqueue(submission.id)

    previous_retry = None
    for attempt in range(1, 10):
        report = await queue.drain(force=True)
        assert report.failed == 1
        item = queue.get(submission.id)
        assert item.attempts == attempt
        delay = (item.next_retry - clock.now).total_seconds()
        assert delay == min(3600, 60 * 2**attempt)
        if previous_retry is not None:
            assert item.next_retry > previous_retry
        previous_retry = item.next_retry
        clock.advance(1)

    report = await queue.drain(force=True)
    assert report.exhausted == 1
    assert submission.id not in queue

    stored = await local_store.get(submission.id)
    assert stored.status is SubmissionStatus.FAILED
    assert stored.retry_count == 10
    assert "unreachable" in stored.last_error


@pytest.mark.asyncio
async def test_drops_items_for_missing_or_already_synced_submissions(queue, local_store, remote) -> None:
    await queue.enqueue("ghost")
    synced = make_submission(status=SubmissionStatus.SYNCED, synced_to_remote=True)
    await local_store.upsert(synced)
    await queue.enqueue(synced.id)

    report = await queue.drain(force=True)

    assert len(queue) == 0
    assert report.succeeded == 1
    assert remote.write_calls == []


@pytest.mark.asyncio
async def test_queue_file_survives_restart(tmp_path, queue, local_store, remote, clock) -> None:
    remote.available = False
    submission = await _pending(local_store)
    await queue.enqueue(submission.id, "offline")
    await queue.drain(force=True)

    raw = json.loads(queue.path.read_text(encoding="utf-8"))
    assert raw["queue"][0]["submissionId"] == submission.id
    assert raw["queue"][0]["attempts"] == 1

    restarted = SyncQueue(queue.path, local_store, remote, clock=clock)
    assert await restarted.load() == 1
    item = restarted.get(submission.id)
    assert item.attempts == 1
    assert item.next_retry == queue.get(submission.id).next_retry


@pytest.mark.asyncio
async def test_load_requeues_pending_records_missing_from_queue_file(tmp_path, local_store, remote, clock) -> None:
    pending = await _pending(local_store)
    await local_store.upsert(make_submission(status=SubmissionStatus.SYNCED, synced_to_remote=True))

    restarted = SyncQueue(tmp_path / "sync-queue.json", local_store, remote, clock=clock)
    assert await restarted.load() == 1
    assert pending.id in restarted

    report = await restarted.drain()
    assert report.succeeded == 1


@pytest.mark.asyncio
async def test_corrupt_queue_file_starts_empty(tmp_path, local_store, remote, clock) -> None:
    path = tmp_path / "sync-queue.json"
    path.write_text("[[[", encoding="utf-8")

    restarted = SyncQueue(path, local_store, remote, clock=clock)
    assert await restarted.load() == 0


@pytest.mark.asyncio
async def test_overlapping_drains_write_each_submission_once(queue, local_store, remote) -> None:
    submission = await _pending(local_store)
    await queue.enqueue(submission.id)

    release = asyncio.Event()
    original_write = remote.write

    async def slow_write(record):
        await release.wait()
        await original_write(record)

    remote.write = slow_write

    first = asyncio.create_task(queue.drain(force=True))
    await asyncio.sleep(0.05)
    second = await queue.drain(force=True)
    release.set()
    first_report = await first

    assert second.skipped == 1
    assert first_report.succeeded == 1
    assert remote.write_calls == [submission.id]


@pytest.mark.asyncio
async def test_status_listener_sees_synced_record(tmp_path, local_store, remote, clock) -> None:
    seen = []

    async def listener(record):
        seen.append((record.id, record.status))

    listened = SyncQueue(tmp_path / "q.json", local_store, remote, clock=clock, on_status_change=listener)
    submission = await _pending(local_store)
    await listened.enqueue(submission.id)
    await listened.drain(force=True)

    assert seen == [(submission.id, SubmissionStatus.SYNCED)]


@pytest.mark.asyncio
async def test_scheduler_drains_in_background(queue, local_store, remote, clock) -> None:
    submission = await _pending(local_store)
    await queue.enqueue(submission.id)
    clock.advance(120)

    scheduler = SyncScheduler(queue, interval=0.01)
    scheduler.start()
    assert scheduler.running
    for _ in range(100):
        if submission.id not in queue:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()

    assert not scheduler.running
    assert submission.id not in queue


@pytest.mark.asyncio
async def test_drain_caps_concurrent_remote_writes(tmp_path, local_store, remote, clock) -> None:
    capped = SyncQueue(tmp_path / "capped.json", local_store, remote, max_workers=2, clock=clock)
    submissions = [await _pending(local_store) for _ in range(3)]
    for submission in submissions:
        await capped.enqueue(submission.id)

    release = asyncio.Event()
    original_write = remote.write
    active = 0
    peak = 0

    async def held_write(record):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        try:
            await release.wait()
            await original_write(record)
        finally:
            active -= 1

    remote.write = held_write

    draining = asyncio.create_task(capped.drain(force=True))
    await asyncio.sleep(0.05)
    assert active == 2
    assert peak == 2

    release.set()
    report = await draining

    assert peak == 2
    assert report.succeeded == 3
    assert sorted(remote.write_calls) == sorted(submission.id for submission in submissions)
