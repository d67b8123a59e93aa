import math
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.errors import PrinterNotFound, TransitionRejected
from shared.lifecycle import PaymentStatus, PrinterStatus, PrintStatus, status_fields
from services.order_service.repository import AuditRepository, OrderRepository
from .capabilities import PAPER_SIZE_RANK
from .models import PRIORITY_LEVELS, PrintJob, Printer
from .repository import PrinterRepository, PrintJobRepository
from .schemas import PrinterCreate, PrinterUpdate

logger = structlog.get_logger(__name__)


def estimate_duration(options: Optional[dict]) -> int:
    """Minutes: half a minute per printed page, plus 0.3 per page for color."""
    options = options or {}
    pages = options.get("page_count") or 1
    copies = options.get("copies") or 1
    color = options.get("color") in ("color", "mixed")
    return math.ceil(pages * copies * 0.5 + (pages * 0.3 if color else 0))


class PrintService:
    @staticmethod
    def new_job(order) -> PrintJob:
        options = dict(order.printing_options or {})
        priority = options.pop("priority", "normal")
        return PrintJob(
            order_id=order.order_id,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            file_url=order.file_url,
            file_name=order.file_name,
            file_type=order.file_type,
            printing_options=options,
            priority=PRIORITY_LEVELS.get(priority, PRIORITY_LEVELS["normal"]),
            estimated_duration=estimate_duration(options),
            retry_count=0,
            max_retries=settings.PRINT_MAX_RETRIES,
        )

    @staticmethod
    async def enqueue_order(db: AsyncSession, order, dispatcher=None, actor: str = "system") -> PrintJob:
        """
        Creates the print job for a paid order and marks the order queued.
        Calling it again for the same order returns the existing job.
        """
        if order.payment_status != PaymentStatus.COMPLETED.value:
            raise TransitionRejected(
                f"Order {order.order_id} is not paid (payment_status={order.payment_status})"
            )

        job, created = await PrintJobRepository.create_once(db, PrintService.new_job(order))
        if not created:
            logger.info("print.job_exists", order_id=order.order_id, job_id=job.id)
            return job

        queued = await OrderRepository.update_if(
            db, order.order_id,
            {"print_status": None, "payment_status": PaymentStatus.COMPLETED},
            {
                "print_status": PrintStatus.PENDING,
                "print_job_id": str(job.id),
                "print_error": None,
                **status_fields(order.status, PrintStatus.PENDING, PaymentStatus.COMPLETED),
            },
        )
        await db.commit()
        if queued:
            await AuditRepository.record(
                db, "job_created", order.order_id, actor,
                new_status=PrintStatus.PENDING.value,
                reason="Print job created for paid order",
                print_job_id=job.id,
                details={"priority": job.priority, "estimated_duration": job.estimated_duration},
            )
        else:
            # The order moved on (admin removal or reprint) between reads
            logger.warning("print.order_not_queued", order_id=order.order_id, job_id=job.id)

        logger.info("print.job_created", order_id=order.order_id, job_id=job.id, priority=job.priority)
        if dispatcher is not None:
            dispatcher.trigger()
        return job

    @staticmethod
    async def get_job(db: AsyncSession, job_id: int) -> Optional[PrintJob]:
        return await PrintJobRepository.get(db, job_id)

    @staticmethod
    async def list_jobs(db: AsyncSession, status: Optional[str] = None, limit: int = 100):
        return await PrintJobRepository.list_jobs(db, status, limit)

    @staticmethod
    async def get_assigned_job(db: AsyncSession, printer_id: int) -> Optional[PrintJob]:
        await PrinterService.get_printer(db, printer_id)
        return await PrintJobRepository.get_assigned(db, printer_id)


class PrinterService:
    """Printer metadata. Status and current job belong to the dispatcher."""

    @staticmethod
    def _check_capabilities(capabilities: dict) -> None:
        max_size = capabilities.get("max_paper_size")
        if max_size and max_size not in PAPER_SIZE_RANK:
            raise TransitionRejected(
                f"Unknown max_paper_size {max_size}. Must be one of: {', '.join(PAPER_SIZE_RANK)}"
            )

    @staticmethod
    async def create_printer(db: AsyncSession, data: PrinterCreate) -> Printer:
        capabilities = data.capabilities.model_dump(exclude_none=True)
        PrinterService._check_capabilities(capabilities)
        printer = Printer(name=data.name, connection=data.connection, capabilities=capabilities)
        return await PrinterRepository.create(db, printer)

    @staticmethod
    async def get_printer(db: AsyncSession, printer_id: int) -> Printer:
        printer = await PrinterRepository.get(db, printer_id)
        if printer is None or not printer.is_active:
            raise PrinterNotFound(f"Printer {printer_id} not found")
        return printer

    @staticmethod
    async def list_printers(db: AsyncSession, include_inactive: bool = False):
        return await PrinterRepository.list_printers(db, include_inactive)

    @staticmethod
    async def update_printer(db: AsyncSession, printer_id: int, data: PrinterUpdate) -> Printer:
        printer = await PrinterService.get_printer(db, printer_id)
        if data.name is not None:
            printer.name = data.name
        if data.connection is not None:
            printer.connection = data.connection
        if data.capabilities is not None:
            capabilities = data.capabilities.model_dump(exclude_none=True)
            PrinterService._check_capabilities(capabilities)
            printer.capabilities = capabilities
        return await PrinterRepository.save(db, printer)

    @staticmethod
    async def deactivate_printer(db: AsyncSession, printer_id: int) -> Printer:
        printer = await PrinterService.get_printer(db, printer_id)
        if printer.status == PrinterStatus.BUSY.value:
            raise TransitionRejected("Printer is busy; wait for its job to finish or reset it first")
        printer.is_active = False
        return await PrinterRepository.save(db, printer)
