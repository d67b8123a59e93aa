"""
Hand-off of claimed jobs to the print-delivery worker.

The worker downloads the file and drives the physical printer; it reports
back through the /printing/jobs/{id}/heartbeat|complete|fail endpoints.
Workers that poll GET /printing/printers/{id}/job need no push at all, so
a failed push only delays the job until the worker polls or the stale sweep
requeues it.
"""
import asyncio
from typing import Optional

import httpx
import structlog

from shared.config import settings
from shared.security.api_key import INTERNAL_API_KEY

logger = structlog.get_logger(__name__)

API_HEADERS = {"X-Internal-API-Key": INTERNAL_API_KEY}


class PrintDeliveryClient:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.PRINT_WORKER_URL if base_url is None else base_url
        self.timeout = timeout or settings.PRINT_WORKER_TIMEOUT_SECONDS
        self._transport = transport
        self._background: set = set()

    async def push(self, job: dict) -> bool:
        if not self.base_url:
            return False
        try:
            async with httpx.AsyncClient(headers=API_HEADERS, timeout=self.timeout,
                                         transport=self._transport) as client:
                resp = await client.post(f"{self.base_url.rstrip('/')}/jobs", json=job)
                resp.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.warning("print_delivery.push_failed", job_id=job.get("id"), error=str(exc))
            return False

    def dispatch(self, job: dict) -> None:
        if not self.base_url:
            return
        task = asyncio.get_running_loop().create_task(self.push(job))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
