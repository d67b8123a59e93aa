"""
Payment reconciliation loop.

Webhooks get lost, so on every pass unpaid orders are checked against the
payment authority and confirmed through the same conditional write the
webhook uses. Orders nobody paid for get one reminder after a couple of
hours and are expired after a day, whatever the gateway says.
"""
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Optional

import structlog

from shared.config import settings
from shared.config.database import AsyncSessionLocal
from shared.errors import GatewayUnavailable, OrderNotFound, TransitionRejected
from shared.lifecycle import OrderStatus, PaymentStatus, status_fields
from shared.notifications import ORDER_EXPIRED, PAYMENT_REMINDER, notifier as default_notifier
from shared.observability import (
    orders_expired_total,
    payment_reconciliation_total,
    payment_reminders_total,
)
from shared.scheduling import ScheduledTask
from shared.utils.clock import utcnow
from services.order_service.models import Order
from services.order_service.repository import AuditRepository, OrderRepository
from services.order_service.schemas import order_snapshot
from .gateway import FAILED, PAID, PaymentGatewayClient, gateway as default_gateway
from .service import PaymentService

logger = structlog.get_logger(__name__)

ACTOR = "reconciliation"


@dataclass
class ReconciliationReport:
    checked: int = 0
    confirmed: int = 0
    already_applied: int = 0
    failed: int = 0
    unreachable: int = 0
    still_pending: int = 0
    errors: int = 0
    reminders_sent: int = 0
    expired: int = 0

    def merge(self, other: "ReconciliationReport") -> "ReconciliationReport":
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)
        return self


class PaymentReconciler:
    def __init__(
        self,
        session_factory=None,
        *,
        gateway: Optional[PaymentGatewayClient] = None,
        notifier=None,
        dispatcher=None,
        interval_seconds: Optional[float] = None,
        min_age_minutes: Optional[int] = None,
        expiry_hours: Optional[int] = None,
        reminder_after_hours: Optional[int] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.gateway = gateway or default_gateway
        self.notifier = notifier or default_notifier
        self.dispatcher = dispatcher
        self.min_age = timedelta(minutes=min_age_minutes if min_age_minutes is not None
                                 else settings.RECONCILIATION_MIN_AGE_MINUTES)
        self.expire_after = timedelta(hours=expiry_hours or settings.PAYMENT_EXPIRY_HOURS)
        self.remind_after = timedelta(hours=reminder_after_hours or settings.PAYMENT_REMINDER_AFTER_HOURS)
        self.last_report: Optional[ReconciliationReport] = None
        self._task = ScheduledTask(
            "payment_reconciliation",
            self.run_pass,
            interval_seconds or settings.RECONCILIATION_INTERVAL_SECONDS,
        )

    # --- CONTROLS ---

    def start(self, interval_seconds: Optional[float] = None) -> bool:
        return self._task.start(interval_seconds)

    def stop(self) -> bool:
        return self._task.stop()

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    def get_status(self) -> dict:
        return {
            **self._task.status(),
            "gateway_configured": self.gateway.configured,
            "last_report": asdict(self.last_report) if self.last_report else None,
        }

    # --- PASSES ---

    async def run_pass(self) -> ReconciliationReport:
        report = ReconciliationReport()
        if self.gateway.configured:
            report.merge(await self.reconcile())
        else:
            logger.warning("reconciliation.gateway_not_configured")
        report.reminders_sent = await self.send_reminders()
        report.expired += await self.expire_unpaid()
        self.last_report = report
        logger.info("reconciliation.pass_done", **asdict(report))
        return report

    async def reconcile(self, min_age_minutes: Optional[int] = None) -> ReconciliationReport:
        min_age = timedelta(minutes=min_age_minutes) if min_age_minutes is not None else self.min_age
        async with self.session_factory() as db:
            candidates = await OrderRepository.list_awaiting_payment(
                db, created_before=utcnow() - min_age, require_gateway_order=True,
            )

        report = ReconciliationReport()
        for order in candidates:
            report.checked += 1
            try:
                outcome = await self._reconcile_one(order)
            except Exception:
                logger.exception("reconciliation.order_error", order_id=order.order_id)
                outcome = "errors"
            setattr(report, outcome, getattr(report, outcome) + 1)
            payment_reconciliation_total.labels(outcome=outcome).inc()
        return report

    async def check_order(self, order_id: str) -> str:
        """Reconciles one order now, whatever its age. Returns the outcome."""
        async with self.session_factory() as db:
            order = await OrderRepository.get_order(db, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            return "already_applied"
        if not order.gateway_order_id:
            raise TransitionRejected(f"Order {order_id} has no gateway order to check")
        outcome = await self._reconcile_one(order)
        payment_reconciliation_total.labels(outcome=outcome).inc()
        return outcome

    async def _reconcile_one(self, order: Order) -> str:
        try:
            lookup = await self.gateway.lookup_order_status(order.gateway_order_id)
        except GatewayUnavailable as exc:
            logger.warning("reconciliation.gateway_unavailable", order_id=order.order_id, error=str(exc))
            return "unreachable"

        if lookup.status == PAID:
            async with self.session_factory() as db:
                applied = await PaymentService.confirm_payment(
                    db, order.order_id, lookup.payment_id, ACTOR, self.dispatcher, self.notifier,
                )
            return "confirmed" if applied else "already_applied"

        if lookup.status == FAILED and order.created_at < utcnow() - self.expire_after:
            expired = await self._expire(order, "Payment failed at gateway and the order is past its payment window")
            return "failed" if expired else "already_applied"

        # Younger failures stay open for the customer to retry
        return "still_pending"

    async def send_reminders(self) -> int:
        now = utcnow()
        async with self.session_factory() as db:
            due = await OrderRepository.list_awaiting_payment(
                db, created_before=now - self.remind_after, created_after=now - self.expire_after,
            )

        sent = 0
        for order in due:
            if order.reminder_sent_at is not None:
                continue
            async with self.session_factory() as db:
                claimed = await OrderRepository.update_if(
                    db, order.order_id,
                    {"reminder_sent_at": None, "payment_status": PaymentStatus.PENDING},
                    {"reminder_sent_at": now},
                )
                await db.commit()
            if not claimed:
                continue
            sent += 1
            payment_reminders_total.inc()
            self.notifier.dispatch(PAYMENT_REMINDER, order_snapshot(order))
            logger.info("reconciliation.reminder_sent", order_id=order.order_id)
        return sent

    async def expire_unpaid(self) -> int:
        async with self.session_factory() as db:
            stale = await OrderRepository.list_awaiting_payment(
                db, created_before=utcnow() - self.expire_after,
            )

        expired = 0
        for order in stale:
            try:
                if await self._expire(order, "Payment not received within the payment window"):
                    expired += 1
            except Exception:
                logger.exception("reconciliation.expire_error", order_id=order.order_id)
        return expired

    async def _expire(self, order: Order, reason: str) -> bool:
        """
        payment_status -> failed. The order stays pending_payment so a late
        capture can still confirm it; the business status shows it failed.
        """
        async with self.session_factory() as db:
            applied = await OrderRepository.update_if(
                db, order.order_id,
                {"payment_status": PaymentStatus.PENDING, "status": OrderStatus.PENDING_PAYMENT},
                status_fields(OrderStatus.PENDING_PAYMENT, order.print_status, PaymentStatus.FAILED)
                | {"payment_status": PaymentStatus.FAILED},
            )
            await db.commit()
            if not applied:
                return False

            orders_expired_total.inc()
            await AuditRepository.record(
                db, "payment_expired", order.order_id, ACTOR,
                previous_status=PaymentStatus.PENDING.value,
                new_status=PaymentStatus.FAILED.value,
                reason=reason,
                details={"created_at": order.created_at.isoformat()},
            )
            order = await OrderRepository.get_order(db, order.order_id)
        self.notifier.dispatch(ORDER_EXPIRED, order_snapshot(order))
        logger.info("reconciliation.order_expired", order_id=order.order_id, reason=reason)
        return True


# Process-wide instance; main.py starts and stops it with the application
payment_reconciler = PaymentReconciler()
