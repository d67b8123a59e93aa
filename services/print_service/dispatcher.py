"""
Print queue dispatcher.

Each tick recovers stale jobs, then hands pending jobs to idle printers. A
claim is one short transaction of conditional writes (printer idle -> busy,
job pending -> printing, order print_status pending -> printing); if any of
them matches no row another tick or dispatcher instance got there first and
the pair is skipped until the next tick. The dispatcher is the only writer
of printer status, so worker reports and admin requeues go through it too.
"""
import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.config.database import AsyncSessionLocal
from shared.errors import PrinterNotFound, PrintJobNotFound, TransitionConflict, TransitionRejected
from shared.lifecycle import (
    OrderStatus,
    PaymentStatus,
    PrinterStatus,
    PrintJobStatus,
    PrintStatus,
    status_fields,
    validate_order_transition,
    validate_print_transition,
)
from shared.notifications import PRINT_FAILED, notifier as default_notifier
from shared.observability import (
    print_claim_conflicts_total,
    print_jobs_claimed_total,
    print_jobs_finished_total,
    print_jobs_recovered_total,
    print_queue_depth,
)
from shared.scheduling import ScheduledTask
from shared.utils.clock import utcnow
from shared.utils.worker_id import get_worker_id
from services.order_service.repository import AuditRepository, OrderRepository
from services.order_service.schemas import order_snapshot
from .capabilities import can_print
from .delivery import PrintDeliveryClient
from .models import PrintJob, Printer
from .repository import PrinterRepository, PrintJobRepository

logger = structlog.get_logger(__name__)

CLAIMED = "claimed"
CONFLICT = "conflict"
ORPHANED = "orphaned"

# Print fields on the order that belong to one claim
_CLEARED_ORDER_CLAIM = {
    "print_started_at": None,
    "printer_id": None,
    "printer_name": None,
    "printing_by": None,
    "printing_heartbeat_at": None,
}

_CLEARED_JOB_CLAIM = {
    "printer_id": None,
    "printer_name": None,
    "worker_id": None,
    "heartbeat_at": None,
    "started_at": None,
    "claim_token": None,
}


@dataclass
class TickResult:
    assigned: int = 0
    skipped: int = 0
    recovered: int = 0
    failed: int = 0


def job_payload(job: PrintJob) -> dict:
    return {
        "id": job.id,
        "order_id": job.order_id,
        "file_url": job.file_url,
        "file_name": job.file_name,
        "file_type": job.file_type,
        "printing_options": job.printing_options,
        "printer_id": job.printer_id,
        "printer_name": job.printer_name,
        "worker_id": job.worker_id,
        "claim_token": job.claim_token,
    }


class PrintQueueDispatcher:
    def __init__(
        self,
        session_factory=None,
        *,
        worker_id: Optional[str] = None,
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        stale_after_seconds: Optional[float] = None,
        notifier=None,
        delivery: Optional[PrintDeliveryClient] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self._worker_id = worker_id
        self.batch_size = batch_size or settings.DISPATCHER_BATCH_SIZE
        self.stale_after = timedelta(
            seconds=stale_after_seconds if stale_after_seconds is not None else settings.STALE_AFTER_SECONDS
        )
        self.notifier = notifier or default_notifier
        self.delivery = delivery or PrintDeliveryClient()
        self.last_tick: Optional[TickResult] = None
        self._task = ScheduledTask(
            "print_dispatcher",
            self.process_queue_once,
            interval_seconds or settings.DISPATCHER_INTERVAL_SECONDS,
        )

    @property
    def worker_id(self) -> str:
        return self._worker_id or get_worker_id()

    # --- CONTROLS ---

    def start(self, interval_seconds: Optional[float] = None) -> bool:
        return self._task.start(interval_seconds)

    def stop(self) -> bool:
        return self._task.stop()

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    def trigger(self) -> None:
        """Runs a tick in the background, e.g. right after a job was created."""
        self._task.trigger_nowait()

    async def get_status(self) -> dict:
        async with self.session_factory() as db:
            jobs = await PrintJobRepository.count_by_status(db)
            printers = await PrinterRepository.count_by_status(db)
        return {
            **self._task.status(),
            "worker_id": self.worker_id,
            "jobs": jobs,
            "printers": printers,
            "last_tick": asdict(self.last_tick) if self.last_tick else None,
        }

    # --- TICK ---

    async def process_queue_once(self) -> TickResult:
        result = TickResult()
        result.recovered = await self.recover_stale_jobs()

        async with self.session_factory() as db:
            pending = await PrintJobRepository.list_pending(db, self.batch_size)
            available = await PrinterRepository.list_idle(db)
        print_queue_depth.set(len(pending))

        for job in pending:
            printer = next((p for p in available if can_print(p, job)), None)
            if printer is None:
                # No capable idle printer: stays pending, not an error
                result.skipped += 1
                continue
            # Each printer gets one attempt per tick, won or lost
            available.remove(printer)
            try:
                outcome = await self._claim(job, printer)
            except Exception:
                logger.exception("dispatcher.claim_error", job_id=job.id, printer_id=printer.id)
                result.skipped += 1
                continue
            if outcome == CLAIMED:
                result.assigned += 1
            elif outcome == ORPHANED:
                result.failed += 1
            else:
                result.skipped += 1

        self.last_tick = result
        if result.assigned or result.recovered or result.failed:
            logger.info("dispatcher.tick", **asdict(result))
        return result

    async def _claim(self, job: PrintJob, printer: Printer) -> str:
        now = utcnow()
        worker_id = self.worker_id
        # Fences worker reports to this attempt; a later claim of the same job gets a new one
        claim_token = uuid.uuid4().hex
        async with self.session_factory() as db:
            try:
                taken = await PrinterRepository.update_if(
                    db, printer.id,
                    {"status": PrinterStatus.IDLE, "is_active": True, "current_job_id": None},
                    {"status": PrinterStatus.BUSY, "current_job_id": job.id, "last_seen_at": now},
                )
                if taken:
                    taken = await PrintJobRepository.update_if(
                        db, job.id,
                        {"status": PrintJobStatus.PENDING},
                        {
                            "status": PrintJobStatus.PRINTING,
                            "printer_id": printer.id,
                            "printer_name": printer.name,
                            "worker_id": worker_id,
                            "claim_token": claim_token,
                            "started_at": now,
                            "heartbeat_at": now,
                            "completed_at": None,
                            "actual_duration": None,
                        },
                    )
                if not taken:
                    await db.rollback()
                    print_claim_conflicts_total.inc()
                    return CONFLICT

                order = await OrderRepository.get_order(db, job.order_id)
                problem = self._unprintable_reason(order)
                if problem:
                    await db.rollback()
                    await self._fail_orphan(job, problem)
                    return ORPHANED

                status = order.status
                if status != OrderStatus.PRINTING.value and validate_order_transition(status, OrderStatus.PRINTING).allowed:
                    status = OrderStatus.PRINTING.value
                updated = await OrderRepository.update_if(
                    db, order.order_id,
                    {
                        "print_status": order.print_status,
                        "payment_status": PaymentStatus.COMPLETED,
                        "status": order.status,
                    },
                    {
                        "print_status": PrintStatus.PRINTING,
                        "print_started_at": now,
                        "print_completed_at": None,
                        "printing_by": worker_id,
                        "printer_id": printer.id,
                        "printer_name": printer.name,
                        "print_job_id": str(job.id),
                        "printing_heartbeat_at": now,
                        "print_error": None,
                        **status_fields(status, PrintStatus.PRINTING, PaymentStatus.COMPLETED),
                    },
                )
                if not updated:
                    await db.rollback()
                    print_claim_conflicts_total.inc()
                    return CONFLICT
                await db.commit()
            except SQLAlchemyError as exc:
                # Lock timeouts and serialization failures are contention too
                await db.rollback()
                print_claim_conflicts_total.inc()
                logger.warning("dispatcher.claim_contention", job_id=job.id, error=str(exc))
                return CONFLICT

            print_jobs_claimed_total.inc()
            claimed = await PrintJobRepository.get(db, job.id)
            await AuditRepository.record(
                db, "state_transition", job.order_id, worker_id,
                previous_status=PrintStatus.PENDING.value,
                new_status=PrintStatus.PRINTING.value,
                reason=f"Claimed by printer {printer.name} (attempt {job.retry_count + 1}/{job.max_retries})",
                print_job_id=job.id,
                details={"printer_id": printer.id, "worker_id": worker_id},
            )

        logger.info("dispatcher.job_claimed", job_id=job.id, order_id=job.order_id, printer=printer.name)
        self.delivery.dispatch(job_payload(claimed))
        return CLAIMED

    @staticmethod
    def _unprintable_reason(order) -> Optional[str]:
        if order is None:
            return "Order not found for print job"
        if order.payment_status != PaymentStatus.COMPLETED.value:
            return f"Order payment is {order.payment_status}; unpaid orders are never printed"
        check = validate_print_transition(order.print_status, PrintStatus.PRINTING)
        if not check.allowed:
            return f"Order cannot start printing: {check.reason}"
        return None

    async def _fail_orphan(self, job: PrintJob, problem: str) -> None:
        logger.error("dispatcher.data_integrity", job_id=job.id, order_id=job.order_id, problem=problem)
        async with self.session_factory() as db:
            failed = await PrintJobRepository.update_if(
                db, job.id,
                {"status": PrintJobStatus.PENDING},
                {"status": PrintJobStatus.FAILED, "error_message": problem},
            )
            await db.commit()
            if failed:
                await AuditRepository.record(
                    db, "job_rejected", job.order_id, self.worker_id,
                    previous_status=PrintJobStatus.PENDING.value,
                    new_status=PrintJobStatus.FAILED.value,
                    reason=problem, print_job_id=job.id,
                )

    # --- STALE SWEEP ---

    async def recover_stale_jobs(self) -> int:
        threshold = utcnow() - self.stale_after
        async with self.session_factory() as db:
            stale = await PrintJobRepository.list_stale(db, threshold)

        recovered = 0
        for job in stale:
            age = job.heartbeat_at or job.started_at
            minutes = int((utcnow() - age).total_seconds() // 60) if age else None
            error = (
                f"Stale print job recovered: heartbeat not updated for {minutes} minutes. "
                "Worker may have crashed."
                if minutes is not None else "Stale print job recovered: no heartbeat recorded."
            )
            try:
                outcome = await self._retry_or_fail(
                    job, error, "stale_print_recovered",
                    PrintJobRepository.stale_condition(threshold),
                    claim_token=job.claim_token,
                )
            except Exception:
                logger.exception("dispatcher.recover_error", job_id=job.id)
                continue
            if outcome is not None:
                recovered += 1
                print_jobs_recovered_total.labels(
                    outcome="failed" if outcome == PrintJobStatus.FAILED else "requeued"
                ).inc()
        return recovered

    async def _retry_or_fail(self, job: PrintJob, error: str, action: str, *conditions,
                             worker_id: Optional[str] = None,
                             claim_token: Optional[str] = None) -> Optional[PrintJobStatus]:
        """
        Ends the current attempt of a printing job: requeues it while retries
        remain, otherwise fails it. Releases the printer and moves the order's
        print fields along in the same transaction. Returns the job's new
        status, or None when the job changed underneath us.
        """
        retries = job.retry_count + 1
        terminal = retries >= job.max_retries
        new_status = PrintJobStatus.FAILED if terminal else PrintJobStatus.PENDING
        new_print_status = PrintStatus.FAILED if terminal else PrintStatus.PENDING
        if terminal:
            error = f"{error} Max print attempts ({job.max_retries}) reached. Requires admin action."

        expected = {**self._held_by(worker_id, claim_token), "retry_count": job.retry_count}

        async with self.session_factory() as db:
            moved = await PrintJobRepository.update_if(
                db, job.id, expected,
                {"status": new_status, "retry_count": retries, "error_message": error, **_CLEARED_JOB_CLAIM},
                *conditions,
            )
            if not moved:
                await db.rollback()
                return None
            await PrinterRepository.release(db, job.printer_id, job.id)

            order = await OrderRepository.get_order(db, job.order_id)
            if order is None:
                logger.error("dispatcher.data_integrity", job_id=job.id, order_id=job.order_id,
                             problem="Order not found for print job")
            else:
                await OrderRepository.update_if(
                    db, order.order_id,
                    {"print_status": PrintStatus.PRINTING, "print_job_id": str(job.id)},
                    {
                        "print_status": new_print_status,
                        "print_error": error,
                        **_CLEARED_ORDER_CLAIM,
                        **status_fields(order.status, new_print_status, order.payment_status),
                    },
                )
            await db.commit()

            await AuditRepository.record(
                db, action, job.order_id, self.worker_id,
                previous_status=PrintStatus.PRINTING.value,
                new_status=new_print_status.value,
                reason=error, print_job_id=job.id,
                details={"retry_count": retries, "max_retries": job.max_retries,
                         "printing_by": job.worker_id or "orphaned"},
            )
            if terminal and order is not None:
                order = await OrderRepository.get_order(db, job.order_id)
                self.notifier.dispatch(PRINT_FAILED, order_snapshot(order))

        log = logger.error if terminal else logger.warning
        log("dispatcher.attempt_ended", job_id=job.id, order_id=job.order_id,
            status=new_status.value, retry_count=retries, error=error)
        return new_status

    # --- WORKER REPORTS ---

    async def _load_job(self, db: AsyncSession, job_id: int) -> PrintJob:
        job = await PrintJobRepository.get(db, job_id)
        if job is None:
            raise PrintJobNotFound(f"Print job {job_id} not found")
        return job

    @staticmethod
    def _held_by(worker_id: Optional[str], claim_token: Optional[str]) -> dict:
        """Conditions that pin a worker report to the claim attempt it was handed."""
        expected = {"status": PrintJobStatus.PRINTING}
        if worker_id is not None:
            expected["worker_id"] = worker_id
        if claim_token is not None:
            expected["claim_token"] = claim_token
        return expected

    async def record_heartbeat(self, job_id: int, worker_id: Optional[str] = None,
                               claim_token: Optional[str] = None) -> bool:
        """False tells the worker the job is no longer its to print."""
        now = utcnow()
        async with self.session_factory() as db:
            job = await self._load_job(db, job_id)
            expected = self._held_by(worker_id, claim_token)
            alive = await PrintJobRepository.update_if(db, job.id, expected, {"heartbeat_at": now})
            if alive:
                await OrderRepository.update_if(
                    db, job.order_id,
                    {"print_status": PrintStatus.PRINTING, "print_job_id": str(job.id)},
                    {"printing_heartbeat_at": now},
                )
                if job.printer_id is not None:
                    await PrinterRepository.update_if(db, job.printer_id, {}, {"last_seen_at": now})
            await db.commit()
        return alive

    async def report_completed(self, job_id: int, worker_id: Optional[str] = None,
                               claim_token: Optional[str] = None) -> PrintJob:
        now = utcnow()
        async with self.session_factory() as db:
            job = await self._load_job(db, job_id)
            if job.status == PrintJobStatus.COMPLETED.value:
                if claim_token is not None and claim_token != job.claim_token:
                    raise TransitionConflict(f"Print job {job_id} was completed under another claim")
                return job
            if job.status != PrintJobStatus.PRINTING.value:
                raise TransitionRejected(f"Print job {job_id} is {job.status}, not printing")

            started = job.started_at or now
            duration = round((now - started).total_seconds() / 60)
            expected = self._held_by(worker_id, claim_token)
            done = await PrintJobRepository.update_if(
                db, job.id, expected,
                {
                    "status": PrintJobStatus.COMPLETED,
                    "completed_at": now,
                    "actual_duration": duration,
                    "heartbeat_at": None,
                    "error_message": None,
                },
            )
            if not done:
                await db.rollback()
                raise TransitionConflict(f"Print job {job_id} is no longer held by this worker")

            await PrinterRepository.release(
                db, job.printer_id, job.id,
                total_jobs_printed=Printer.total_jobs_printed + 1, last_seen_at=now,
            )
            order = await OrderRepository.get_order(db, job.order_id)
            order_moved = False
            if order is None:
                logger.error("dispatcher.data_integrity", job_id=job.id, order_id=job.order_id,
                             problem="Completed job has no order")
            elif validate_print_transition(order.print_status, PrintStatus.PRINTED).allowed:
                status = order.status
                # A printed order is eligible for dispatch from 'printing'
                if status in (OrderStatus.PAID.value, OrderStatus.PROCESSING.value):
                    status = OrderStatus.PRINTING.value
                order_moved = await OrderRepository.update_if(
                    db, order.order_id,
                    {"print_status": PrintStatus.PRINTING, "print_job_id": str(job.id)},
                    {
                        "print_status": PrintStatus.PRINTED,
                        "print_completed_at": now,
                        "printing_by": None,
                        "printing_heartbeat_at": None,
                        "print_error": None,
                        **status_fields(status, PrintStatus.PRINTED, order.payment_status),
                    },
                )
            if order is not None and not order_moved:
                logger.warning("dispatcher.order_diverged", job_id=job.id, order_id=job.order_id,
                               print_status=order.print_status)
            await db.commit()

            print_jobs_finished_total.labels(status="completed").inc()
            await AuditRepository.record(
                db, "print_completed", job.order_id, worker_id or job.worker_id or self.worker_id,
                previous_status=PrintStatus.PRINTING.value,
                new_status=PrintStatus.PRINTED.value,
                reason="Print job completed successfully",
                print_job_id=job.id,
                details={"actual_duration": duration, "printer_id": job.printer_id},
            )
            job = await PrintJobRepository.get(db, job.id)
        logger.info("dispatcher.job_completed", job_id=job.id, order_id=job.order_id)
        return job

    async def report_failed(self, job_id: int, error: str, worker_id: Optional[str] = None,
                            claim_token: Optional[str] = None) -> PrintJob:
        async with self.session_factory() as db:
            job = await self._load_job(db, job_id)
        if job.status != PrintJobStatus.PRINTING.value:
            raise TransitionRejected(f"Print job {job_id} is {job.status}, not printing")

        outcome = await self._retry_or_fail(
            job, f"Print job failed: {error or 'Unknown error'}", "print_failed",
            worker_id=worker_id, claim_token=claim_token,
        )
        if outcome is None:
            raise TransitionConflict(f"Print job {job_id} is no longer held by this worker")
        print_jobs_finished_total.labels(
            status="failed" if outcome == PrintJobStatus.FAILED else "requeued"
        ).inc()

        async with self.session_factory() as db:
            return await PrintJobRepository.get(db, job_id)

    # --- PRINTER PRESENCE ---

    async def printer_online(self, printer_id: int) -> Printer:
        now = utcnow()
        async with self.session_factory() as db:
            printer = await PrinterRepository.get(db, printer_id)
            if printer is None or not printer.is_active:
                raise PrinterNotFound(f"Printer {printer_id} not found")
            came_online = await PrinterRepository.update_if(
                db, printer.id, {"status": PrinterStatus.OFFLINE},
                {"status": PrinterStatus.IDLE, "last_seen_at": now},
            )
            if not came_online:
                await PrinterRepository.update_if(db, printer.id, {}, {"last_seen_at": now})
            await db.commit()
            printer = await PrinterRepository.get(db, printer_id)
        if came_online:
            logger.info("dispatcher.printer_online", printer_id=printer_id)
            self.trigger()
        return printer

    async def printer_offline(self, printer_id: int) -> Printer:
        async with self.session_factory() as db:
            printer = await PrinterRepository.get(db, printer_id)
            if printer is None:
                raise PrinterNotFound(f"Printer {printer_id} not found")
            if printer.status == PrinterStatus.BUSY.value:
                raise TransitionRejected(
                    "Printer is busy; finish, fail or reset its job before taking it offline"
                )
            await PrinterRepository.update_if(
                db, printer.id, {"status": PrinterStatus.IDLE}, {"status": PrinterStatus.OFFLINE},
            )
            await db.commit()
            return await PrinterRepository.get(db, printer_id)

    # --- ADMIN HOOKS (run inside the caller's transaction, no commit) ---

    async def requeue_job(self, db: AsyncSession, order_id: str, reason: Optional[str]) -> Optional[int]:
        """Puts the order's job back to pending, releasing its printer if it held one."""
        job = await PrintJobRepository.get_by_order(db, order_id)
        if job is None:
            return None
        expected = {"status": job.status}
        if job.status == PrintJobStatus.PRINTING.value:
            expected["worker_id"] = job.worker_id
        moved = await PrintJobRepository.update_if(
            db, job.id, expected,
            {
                "status": PrintJobStatus.PENDING,
                "retry_count": 0,  # an operator requeue starts a fresh set of attempts
                "error_message": reason,
                "completed_at": None,
                "actual_duration": None,
                **_CLEARED_JOB_CLAIM,
            },
        )
        if not moved:
            raise TransitionConflict("Print job changed while it was being requeued; try again")
        if job.status == PrintJobStatus.PRINTING.value:
            await PrinterRepository.release(db, job.printer_id, job.id)
        return job.id

    async def complete_job(self, db: AsyncSession, order_id: str, reason: Optional[str]) -> Optional[int]:
        """Force-completes the order's job, whatever state it is in."""
        job = await PrintJobRepository.get_by_order(db, order_id)
        if job is None or job.status == PrintJobStatus.COMPLETED.value:
            return job.id if job else None
        now = utcnow()
        moved = await PrintJobRepository.update_if(
            db, job.id, {"status": job.status},
            {
                "status": PrintJobStatus.COMPLETED,
                "completed_at": now,
                "error_message": reason,
                "heartbeat_at": None,
                "worker_id": None,
                "claim_token": None,
            },
        )
        if not moved:
            raise TransitionConflict("Print job changed while it was being completed; try again")
        if job.status == PrintJobStatus.PRINTING.value:
            await PrinterRepository.release(db, job.printer_id, job.id)
        return job.id

    async def withdraw_job(self, db: AsyncSession, order_id: str, reason: Optional[str]) -> Optional[int]:
        """Takes a job that is not printing out of the queue; the row stays as history."""
        job = await PrintJobRepository.get_by_order(db, order_id)
        if job is None or job.status in (PrintJobStatus.FAILED.value, PrintJobStatus.COMPLETED.value):
            return job.id if job else None
        if job.status == PrintJobStatus.PRINTING.value:
            raise TransitionRejected("Cannot remove a job that is currently printing. Reset it first.")
        moved = await PrintJobRepository.update_if(
            db, job.id, {"status": job.status},
            {"status": PrintJobStatus.FAILED, "error_message": f"Removed from queue: {reason or 'no reason given'}"},
        )
        if not moved:
            raise TransitionConflict("Print job changed while it was being removed; try again")
        return job.id


# Process-wide instance; main.py starts and stops it with the application
print_dispatcher = PrintQueueDispatcher()
