from intake.services.duplicate_guard import DuplicateGuard, fingerprint

from conftest import MonotonicClock, make_payload


def test_fingerprint_ignores_case_spacing_and_phone_formatting() -> None:
    base = fingerprint(make_payload())
    variant = fingerprint(
        make_payload(fullName="  amina   BENALI ", phone="055 123 45 67", requestedAmount="10000000")
    )
    assert base == variant


def test_fingerprint_changes_with_amount_or_identity() -> None:
    base = fingerprint(make_payload())
    assert fingerprint(make_payload(requestedAmount=12_000_000)) != base
    assert fingerprint(make_payload(phone="0661234567")) != base
    assert fingerprint(make_payload(fullName="Amina Benali Kaci")) != base


def test_fingerprint_ignores_non_identity_fields() -> None:
    assert fingerprint(make_payload(notes="autre")) == fingerprint(make_payload(notes="Merci"))


def test_second_claim_inside_window_returns_first_entry() -> None:
    guard = DuplicateGuard(window_seconds=60, clock=MonotonicClock())
    ids = iter(["first", "second"])

    entry, created = guard.claim("key", lambda: next(ids))
    again, created_again = guard.claim("key", lambda: next(ids))

    assert created is True
    assert created_again is False
    assert again.submission_id == entry.submission_id == "first"


def test_claim_after_window_is_fresh() -> None:
    clock = MonotonicClock()
    guard = DuplicateGuard(window_seconds=60, clock=clock)
    guard.claim("key", lambda: "first")

    clock.advance(60.5)
    entry, created = guard.claim("key", lambda: "second")

    assert created is True
    assert entry.submission_id == "second"


def test_expired_entries_are_evicted_lazily() -> None:
    clock = MonotonicClock()
    guard = DuplicateGuard(window_seconds=60, clock=clock)
    guard.claim("a", lambda: "1")
    guard.claim("b", lambda: "2")
    assert len(guard) == 2

    clock.advance(61)
    assert "a" not in guard
    assert len(guard) == 0


def test_release_frees_the_key() -> None:
    guard = DuplicateGuard(window_seconds=60, clock=MonotonicClock())
    guard.claim("key", lambda: "first")
    guard.release("key")

    entry, created = guard.claim("key", lambda: "second")
    assert created is True
    assert entry.submission_id == "second"


def test_release_for_a_superseded_claim_keeps_the_current_one() -> None:
    guard = DuplicateGuard(window_seconds=60, clock=MonotonicClock())
    guard.claim("key", lambda: "first")
    guard.release("key", "first")
    guard.claim("key", lambda: "second")

    guard.release("key", "first")

    entry, created = guard.claim("key", lambda: "third")
    assert created is False
    assert entry.submission_id == "second"
