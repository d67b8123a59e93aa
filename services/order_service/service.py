"""
Order lifecycle: creation, validated status transitions and admin print actions.

Every write is conditional on the state the request was validated against;
a write that matches no row means someone else changed the order first and
surfaces as TransitionConflict instead of silently overwriting them.
"""
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import OrderNotFound, TransitionConflict, TransitionRejected
from shared.lifecycle import (
    PRINT_ACTIONS,
    ActionContext,
    OrderStatus,
    PaymentStatus,
    PrintStatus,
    evaluate_print_action,
    status_fields,
    validate_order_transition,
)
from shared.utils.clock import utcnow
from services.print_service.dispatcher import print_dispatcher
from services.print_service.service import PrintService
from .models import Order
from .repository import AuditRepository, OrderRepository
from .schemas import OrderCreate

logger = structlog.get_logger(__name__)

_CLEARED_CLAIM = {
    "print_started_at": None,
    "printer_id": None,
    "printer_name": None,
    "printing_by": None,
    "printing_heartbeat_at": None,
}


class OrderService:
    @staticmethod
    async def create_order(db: AsyncSession, data: OrderCreate) -> Order:
        order = Order(
            order_id=data.order_id,
            amount=data.amount,
            gateway_order_id=data.gateway_order_id,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            customer_phone=data.customer_phone,
            file_url=data.file_url,
            file_name=data.file_name,
            file_type=data.file_type,
            printing_options=data.printing_options.model_dump(),
            payment_status=PaymentStatus.PENDING.value,
            **status_fields(OrderStatus.PENDING_PAYMENT, None, PaymentStatus.PENDING),
        )
        try:
            return await OrderRepository.create_order(db, order)
        except IntegrityError:
            await db.rollback()
            raise TransitionRejected(f"Order {data.order_id} already exists")

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Order:
        order = await OrderRepository.get_order(db, order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    @staticmethod
    async def list_print_log(db: AsyncSession, order_id: str):
        await OrderService.get_order(db, order_id)
        return await OrderRepository.list_logs(db, order_id)

    @staticmethod
    async def transition_status(
        db: AsyncSession,
        order_id: str,
        target: OrderStatus,
        actor: str,
        is_admin_override: bool = False,
        reason: Optional[str] = None,
    ) -> Order:
        order = await OrderService.get_order(db, order_id)
        target = OrderStatus(target)

        # pending_payment -> paid is owned by payment confirmation
        if target is OrderStatus.PAID:
            raise TransitionRejected(
                "Orders become paid only through payment confirmation (webhook or reconciliation)"
            )

        check = validate_order_transition(order.status, target, is_admin_override)
        if not check.allowed:
            raise TransitionRejected(check.reason)

        previous = order.status
        applied = await OrderRepository.update_if(
            db, order_id,
            {"status": previous, "print_status": order.print_status},
            status_fields(target, order.print_status, order.payment_status),
        )
        if not applied:
            await db.rollback()
            raise TransitionConflict(f"Order {order_id} changed while it was being updated; try again")
        await db.commit()

        await AuditRepository.record(
            db, "status_override" if check.reason else "status_transition", order_id, actor,
            previous_status=previous,
            new_status=target.value,
            reason=reason or check.reason,
            details={"is_admin_override": is_admin_override},
        )
        logger.info("order.status_changed", order_id=order_id, previous=previous,
                    new=target.value, actor=actor, override=bool(check.reason))
        return await OrderRepository.get_order(db, order_id)

    @staticmethod
    async def perform_print_action(
        db: AsyncSession,
        order_id: str,
        action: str,
        actor: str,
        reason: Optional[str] = None,
        confirmed: bool = False,
        dispatcher=None,
    ) -> dict:
        """
        Applies one admin print action. Guards and the transition table are
        checked against the order as read; the order write, the job/printer
        write and nothing else share one transaction.
        """
        dispatcher = dispatcher or print_dispatcher
        order = await OrderService.get_order(db, order_id)
        ctx = ActionContext(
            print_status=order.print_status,
            payment_status=order.payment_status,
            reason=reason,
            confirmed=confirmed,
        )
        check = evaluate_print_action(action, ctx)
        if not check.allowed:
            raise TransitionRejected(check.reason)

        target = PRINT_ACTIONS[action].target
        previous = order.print_status
        now = utcnow()
        values = {"print_status": target}

        if action == "remove_from_queue":
            if previous is None:
                raise TransitionRejected("Order is not in the print queue")
            values.update(_CLEARED_CLAIM)
        elif action == "force_printed":
            values.update({
                "print_completed_at": now,
                "printing_by": None,
                "printing_heartbeat_at": None,
                "print_error": None,
            })
        else:
            # reprint and reset_printing put the order back in the queue
            if order.payment_status != PaymentStatus.COMPLETED.value:
                raise TransitionRejected("Only paid orders can be queued for printing")
            values.update(_CLEARED_CLAIM)
            values.update({"print_completed_at": None, "print_error": reason})

        status = order.status
        if target is PrintStatus.PRINTED and status in (OrderStatus.PAID.value, OrderStatus.PROCESSING.value):
            # Printed orders are dispatch-eligible from 'printing'
            status = OrderStatus.PRINTING.value
        values.update(status_fields(status, target, order.payment_status))

        try:
            applied = await OrderRepository.update_if(
                db, order_id,
                {"print_status": previous, "status": order.status, "payment_status": order.payment_status},
                values,
            )
            if not applied:
                raise TransitionConflict(f"Order {order_id} changed while it was being updated; try again")

            if action == "remove_from_queue":
                job_id = await dispatcher.withdraw_job(db, order_id, reason)
            elif action == "force_printed":
                job_id = await dispatcher.complete_job(db, order_id, reason)
            else:
                job_id = await dispatcher.requeue_job(db, order_id, reason)
                if job_id is None:
                    job = PrintService.new_job(order)
                    db.add(job)
                    await db.flush()
                    job_id = job.id
                await OrderRepository.update_if(
                    db, order_id, {"print_status": target}, {"print_job_id": str(job_id)},
                )
            await db.commit()
        except IntegrityError:
            # A concurrent enqueue created the job first
            await db.rollback()
            raise TransitionConflict(f"Order {order_id} changed while it was being updated; try again")
        except (TransitionConflict, TransitionRejected):
            await db.rollback()
            raise

        new_status = target.value if target else None
        await AuditRepository.record(
            db, action, order_id, actor,
            previous_status=previous,
            new_status=new_status,
            reason=reason or check.reason,
            print_job_id=job_id,
            details={"confirmed": confirmed, "admin_override": check.reason is not None},
        )
        logger.info("order.print_action", order_id=order_id, action=action,
                    previous=previous, new=new_status, actor=actor)

        if target is PrintStatus.PENDING:
            dispatcher.trigger()

        return {
            "action": action,
            "order_id": order_id,
            "previous_status": previous,
            "new_status": new_status,
            "message": check.reason or f"{action} applied",
        }
