from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.lifecycle import PrinterStatus, PrintJobStatus
from shared.utils.conditional import update_if
from .models import PrintJob, Printer


class PrintJobRepository:
    @staticmethod
    async def get(db: AsyncSession, job_id: int) -> Optional[PrintJob]:
        result = await db.execute(
            select(PrintJob).where(PrintJob.id == job_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_by_order(db: AsyncSession, order_id: str) -> Optional[PrintJob]:
        result = await db.execute(
            select(PrintJob).where(PrintJob.order_id == order_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def create_once(db: AsyncSession, job: PrintJob) -> tuple[PrintJob, bool]:
        """
        Inserts the job unless the order already has one. Returns the stored
        job and whether this call created it. Commits.
        """
        existing = await PrintJobRepository.get_by_order(db, job.order_id)
        if existing:
            return existing, False
        db.add(job)
        try:
            await db.commit()
        except IntegrityError:
            # Lost the race against a concurrent enqueue of the same order
            await db.rollback()
            return await PrintJobRepository.get_by_order(db, job.order_id), False
        await db.refresh(job)
        return job, True

    @staticmethod
    async def list_pending(db: AsyncSession, limit: int) -> list[PrintJob]:
        # Higher priority first, then oldest; id makes the order total
        result = await db.execute(
            select(PrintJob)
            .where(PrintJob.status == PrintJobStatus.PENDING.value)
            .order_by(PrintJob.priority.desc(), PrintJob.created_at.asc(), PrintJob.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    def stale_condition(threshold: datetime):
        return or_(
            PrintJob.heartbeat_at < threshold,
            and_(PrintJob.heartbeat_at.is_(None), PrintJob.started_at < threshold),
            and_(PrintJob.heartbeat_at.is_(None), PrintJob.started_at.is_(None)),
        )

    @staticmethod
    async def list_stale(db: AsyncSession, threshold: datetime) -> list[PrintJob]:
        result = await db.execute(
            select(PrintJob)
            .where(PrintJob.status == PrintJobStatus.PRINTING.value)
            .where(PrintJobRepository.stale_condition(threshold))
            .order_by(PrintJob.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_jobs(db: AsyncSession, status: Optional[str] = None, limit: int = 100) -> list[PrintJob]:
        stmt = select(PrintJob).order_by(PrintJob.created_at.desc()).limit(limit)
        if status:
            stmt = stmt.where(PrintJob.status == status)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_assigned(db: AsyncSession, printer_id: int) -> Optional[PrintJob]:
        result = await db.execute(
            select(PrintJob)
            .where(PrintJob.printer_id == printer_id)
            .where(PrintJob.status == PrintJobStatus.PRINTING.value)
        )
        return result.scalars().first()

    @staticmethod
    async def count_by_status(db: AsyncSession) -> dict[str, int]:
        result = await db.execute(select(PrintJob.status, func.count()).group_by(PrintJob.status))
        counts = {s.value: 0 for s in PrintJobStatus}
        counts.update({status: count for status, count in result.all()})
        return counts

    @staticmethod
    async def update_if(db: AsyncSession, job_id: int, expected: dict, values: dict, *conditions) -> bool:
        return await update_if(db, PrintJob, (PrintJob.id, job_id), expected, values, *conditions)


class PrinterRepository:
    @staticmethod
    async def create(db: AsyncSession, printer: Printer) -> Printer:
        db.add(printer)
        await db.commit()
        await db.refresh(printer)
        return printer

    @staticmethod
    async def get(db: AsyncSession, printer_id: int) -> Optional[Printer]:
        result = await db.execute(
            select(Printer).where(Printer.id == printer_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_printers(db: AsyncSession, include_inactive: bool = False) -> list[Printer]:
        stmt = select(Printer).order_by(Printer.id.asc())
        if not include_inactive:
            stmt = stmt.where(Printer.is_active.is_(True))
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_idle(db: AsyncSession) -> list[Printer]:
        result = await db.execute(
            select(Printer)
            .where(Printer.is_active.is_(True))
            .where(Printer.status == PrinterStatus.IDLE.value)
            .order_by(Printer.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def count_by_status(db: AsyncSession) -> dict[str, int]:
        result = await db.execute(
            select(Printer.status, func.count())
            .where(Printer.is_active.is_(True))
            .group_by(Printer.status)
        )
        counts = {s.value: 0 for s in PrinterStatus}
        counts.update({status: count for status, count in result.all()})
        return counts

    @staticmethod
    async def save(db: AsyncSession, printer: Printer) -> Printer:
        db.add(printer)
        await db.commit()
        await db.refresh(printer)
        return printer

    @staticmethod
    async def update_if(db: AsyncSession, printer_id: int, expected: dict, values: dict, *conditions) -> bool:
        return await update_if(db, Printer, (Printer.id, printer_id), expected, values, *conditions)

    @staticmethod
    async def release(db: AsyncSession, printer_id: Optional[int], job_id: int, **values) -> bool:
        """busy -> idle, only while the printer still holds this job. Does not commit."""
        if printer_id is None:
            return False
        return await update_if(
            db, Printer, (Printer.id, printer_id),
            {"status": PrinterStatus.BUSY, "current_job_id": job_id},
            {"status": PrinterStatus.IDLE, "current_job_id": None, **values},
        )
