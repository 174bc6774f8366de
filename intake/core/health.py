from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Any

from intake.core.exceptions import TransientStoreError
from intake.core.settings import settings
from intake.services.container import ServiceContainer
from intake.services.remote_store import DisabledRemoteStore, with_timeout

APP_VERSION = "0.1.0"

_HEALTHY = {"ok", "disabled"}


async def _check_local_store(container: ServiceContainer) -> dict[str, Any]:
    data_dir = container.settings.data_dir
    writable = await asyncio.to_thread(os.access, data_dir, os.W_OK)
    if not writable:
        return {"status": "error", "error": f"{data_dir} is not writable"}
    snapshot = await container.local_store.snapshot()
    return {"status": "ok", "count": snapshot.count}


async def _check_remote_store(container: ServiceContainer) -> dict[str, str]:
    if isinstance(container.remote, DisabledRemoteStore):
        return {"status": "disabled"}
    try:
        await with_timeout(container.remote.ping(), container.settings.remote_timeout_seconds)
        return {"status": "ok"}
    except TransientStoreError as exc:
        return {"status": "error", "error": str(exc)}


def _check_sync_queue(container: ServiceContainer) -> dict[str, Any]:
    last = container.queue.last_processed
    return {
        "status": "ok",
        "length": len(container.queue),
        "scheduler": "running" if container.scheduler.running else "stopped",
        "last_processed": last.isoformat() if last else None,
    }


async def _check_api() -> dict[str, str]:
    return {"status": "ok", "version": APP_VERSION}


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") in _HEALTHY for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def _collect_checks(container: ServiceContainer) -> dict[str, dict[str, Any]]:
    return {
        "api": await _check_api(),
        "local_store": await _check_local_store(container),
        "remote_store": await _check_remote_store(container),
        "sync_queue": _check_sync_queue(container),
    }


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def ready_payload(container: ServiceContainer) -> dict[str, Any]:
    checks = await _collect_checks(container)
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


async def status_summary_payload(container: ServiceContainer) -> dict[str, Any]:
    checks = await _collect_checks(container)
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
        "realtime": {"active_connections": container.broadcaster.active_connections},
    }


async def health_payload(container: ServiceContainer) -> dict[str, Any]:
    return await ready_payload(container)
