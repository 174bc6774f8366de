from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from intake.schemas.submission import StoredSubmission

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def send(self, submission: StoredSubmission) -> None: ...


def notification_payload(submission: StoredSubmission, app_url: str) -> dict[str, Any]:
    data = submission.data
    return {
        "event": "submission.created",
        "submissionId": submission.id,
        "timestamp": submission.timestamp.isoformat(),
        "fullName": data.get("fullName"),
        "phone": data.get("phone"),
        "wilaya": data.get("wilaya"),
        "financingType": data.get("financingType"),
        "requestedAmount": data.get("requestedAmount"),
        "adminUrl": f"{app_url.rstrip('/')}/admin",
    }


class LoggingNotificationSender:
    """Default sender: records the new submission in the service log."""

    async def send(self, submission: StoredSubmission) -> None:
        logger.info(
            "New submission received",
            extra={
                "submission_id": submission.id,
                "financing_type": submission.data.get("financingType"),
                "requested_amount": submission.data.get("requestedAmount"),
            },
        )


class WebhookNotificationSender:
    """POST a summary of each new submission to an operator webhook."""

    def __init__(
        self,
        url: str,
        *,
        app_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.app_url = app_url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def send(self, submission: StoredSubmission) -> None:
        response = await self._client.post(self.url, json=notification_payload(submission, self.app_url))
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
