"""
Timer-driven background task with a manual trigger.

One ScheduledTask wraps one coroutine function. `start` is idempotent,
`stop` never waits for an in-flight run, and a run that raises is logged
and recorded without killing the loop.
"""
import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog

from shared.observability import scheduled_task_duration_seconds, scheduled_task_errors_total
from shared.utils.clock import utcnow

logger = structlog.get_logger(__name__)


class ScheduledTask:
    def __init__(self, name: str, func: Callable[[], Awaitable[Any]], interval_seconds: float):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._background: set = set()
        self.runs = 0
        self.last_run_at: Optional[datetime] = None
        self.last_result: Any = None
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._stop_event.is_set()

    def start(self, interval_seconds: Optional[float] = None) -> bool:
        """Starts the recurring loop. Returns False when it was already running."""
        if self.is_running:
            logger.info("scheduled_task.already_running", task=self.name)
            return False

        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError("interval_seconds must be positive")
            self.interval_seconds = interval_seconds

        # Each loop owns its own stop event so a loop still finishing a run
        # after stop() cannot be revived by a later start()
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run_loop(stop_event), name=f"scheduled:{self.name}"
        )
        logger.info("scheduled_task.started", task=self.name, interval_seconds=self.interval_seconds)
        return True

    def stop(self) -> bool:
        """Stops the loop. Safe from any state; an in-flight run is left to finish."""
        if not self.is_running:
            return False
        self._stop_event.set()
        self._loop_task = None
        logger.info("scheduled_task.stopped", task=self.name)
        return True

    async def trigger(self) -> Any:
        """Runs once now, outside the timer. Concurrent runs are allowed."""
        return await self._run_once()

    def trigger_nowait(self) -> None:
        """Schedules one out-of-band run without waiting for it."""
        task = asyncio.get_running_loop().create_task(self._run_once())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def status(self) -> dict:
        return {
            "name": self.name,
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self._run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def _run_once(self) -> Any:
        started = time.perf_counter()
        try:
            result = await self.func()
        except Exception as exc:
            scheduled_task_errors_total.labels(task=self.name).inc()
            self.last_error = f"{type(exc).__name__}: {exc}"
            logger.exception("scheduled_task.failed", task=self.name)
            return None
        finally:
            self.runs += 1
            self.last_run_at = utcnow()
            scheduled_task_duration_seconds.labels(task=self.name).observe(
                time.perf_counter() - started
            )
        self.last_error = None
        self.last_result = result
        return result
