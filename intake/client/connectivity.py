from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

import httpx

from intake.client.offline_queue import ClientOfflineQueue

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Polls the service liveness endpoint and reports transitions to the queue."""

    def __init__(
        self,
        queue: ClientOfflineQueue,
        client: httpx.AsyncClient,
        *,
        health_path: str = "/api/v1/health/live",
        interval: float = 15.0,
    ) -> None:
        self.queue = queue
        self.client = client
        self.health_path = health_path
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    async def is_reachable(self) -> bool:
        try:
            response = await self.client.get(self.health_path)
        except httpx.HTTPError as exc:
            logger.debug("Connectivity check failed: %s", exc)
            return False
        return response.is_success

    async def check(self) -> bool:
        online = await self.is_reachable()
        if online != self.queue.online:
            logger.info("Connectivity changed", extra={"online": online})
        await self.queue.on_connectivity_change(online)
        return online

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="connectivity-monitor")

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
