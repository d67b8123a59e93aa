"""
Client for the external notification service (email/SMS composition lives there).

Notifications are fire-and-forget: every failure is logged and swallowed so
a notice can never block or fail the transition that produced it.
"""
import asyncio
from typing import Optional

import httpx
import structlog

from shared.config import settings

logger = structlog.get_logger(__name__)

PAYMENT_COMPLETED = "payment_completed"
PAYMENT_REMINDER = "payment_reminder"
ORDER_EXPIRED = "order_expired"
PRINT_FAILED = "print_failed"


class NotificationClient:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.NOTIFICATION_URL if base_url is None else base_url
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._transport = transport
        self._background: set = set()

    async def notify(self, kind: str, snapshot: dict) -> bool:
        """Sends one notice. Returns whether the service accepted it; never raises."""
        if not self.base_url:
            logger.info("notification.skipped", kind=kind, order_id=snapshot.get("order_id"),
                        reason="NOTIFICATION_URL not configured")
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url.rstrip('/')}/notifications",
                    json={"kind": kind, "order": snapshot},
                )
                resp.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.warning("notification.failed", kind=kind,
                           order_id=snapshot.get("order_id"), error=str(exc))
            return False

    def dispatch(self, kind: str, snapshot: dict) -> None:
        """Schedules a notice in the background and returns immediately."""
        task = asyncio.get_running_loop().create_task(self.notify(kind, snapshot))
        self._background.add(task)
        task.add_done_callback(self._background.discard)


notifier = NotificationClient()
