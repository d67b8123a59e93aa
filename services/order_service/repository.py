from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.lifecycle import OrderStatus, PaymentStatus
from shared.utils.conditional import update_if
from .models import Order, PrintActionLog

logger = structlog.get_logger(__name__)


class OrderRepository:
    @staticmethod
    async def create_order(db: AsyncSession, order: Order):
        db.add(order)
        await db.commit()
        await db.refresh(order)
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order).where(Order.order_id == order_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_by_gateway_order(db: AsyncSession, gateway_order_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.gateway_order_id == gateway_order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def update_if(db: AsyncSession, order_id: str, expected: dict, values: dict, *conditions) -> bool:
        """
        Applies `values` only while every column in `expected` still holds its
        expected value. Returns whether the row was updated; does not commit,
        so it can join a larger transaction.
        """
        return await update_if(db, Order, (Order.order_id, order_id), expected, values, *conditions)

    @staticmethod
    async def list_awaiting_payment(
        db: AsyncSession,
        created_before: datetime,
        created_after: Optional[datetime] = None,
        require_gateway_order: bool = False,
    ) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.payment_status == PaymentStatus.PENDING.value)
            .where(Order.status == OrderStatus.PENDING_PAYMENT.value)
            .where(Order.created_at < created_before)
            .order_by(Order.created_at.asc())
        )
        if created_after is not None:
            stmt = stmt.where(Order.created_at > created_after)
        if require_gateway_order:
            stmt = stmt.where(Order.gateway_order_id.is_not(None))
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_logs(db: AsyncSession, order_id: str) -> list[PrintActionLog]:
        result = await db.execute(
            select(PrintActionLog)
            .where(PrintActionLog.order_id == order_id)
            .order_by(PrintActionLog.created_at.asc(), PrintActionLog.id.asc())
        )
        return list(result.scalars().all())


class AuditRepository:
    @staticmethod
    async def record(
        db: AsyncSession,
        action: str,
        order_id: str,
        actor: str,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
        reason: Optional[str] = None,
        print_job_id=None,
        details: Optional[dict] = None,
    ) -> None:
        """
        Appends one audit row in its own commit. Called after the transition
        it describes has committed; a failed write is logged and dropped.
        """
        entry = PrintActionLog(
            action=action,
            order_id=order_id,
            print_job_id=str(print_job_id) if print_job_id is not None else None,
            actor=actor,
            previous_status=previous_status,
            new_status=new_status,
            reason=reason,
            details=details or {},
        )
        try:
            db.add(entry)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("audit.write_failed", action=action, order_id=order_id)
