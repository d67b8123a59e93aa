"""
Payment confirmation.

`confirm_payment` is the single place an order becomes paid. Webhook,
checkout verification and reconciliation all funnel into it, and its
conditional write (status still pending_payment, payment not completed)
decides the one winner that goes on to notify and queue the print job.
"""
import json
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.errors import GatewayUnavailable, OrderNotFound, TransitionRejected
from shared.lifecycle import OrderStatus, PaymentStatus, status_fields, validate_order_transition
from shared.notifications import PAYMENT_COMPLETED, notifier as default_notifier
from shared.observability import payment_confirmations_total
from shared.utils.clock import utcnow
from services.order_service.models import Order
from services.order_service.repository import AuditRepository, OrderRepository
from services.order_service.schemas import order_snapshot
from services.print_service.dispatcher import print_dispatcher
from services.print_service.service import PrintService
from .gateway import PAID, PaymentGatewayClient, gateway as default_gateway, verify_signature

logger = structlog.get_logger(__name__)

CONFIRMING_EVENTS = ("payment.captured", "order.paid")


class InvalidSignature(ValueError):
    pass


class PaymentService:
    @staticmethod
    async def confirm_payment(
        db: AsyncSession,
        order_id: str,
        payment_id: Optional[str],
        source: str,
        dispatcher=None,
        notifier=None,
    ) -> bool:
        """
        Marks the order paid. Returns True only for the call that applied
        the change; every later or concurrent call is a no-op returning False.
        """
        order = await OrderRepository.get_order(db, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            logger.info("payment.already_confirmed", order_id=order_id, source=source)
            return False

        check = validate_order_transition(order.status, OrderStatus.PAID)
        if not check.allowed:
            raise TransitionRejected(check.reason)

        previous_payment = order.payment_status
        applied = await OrderRepository.update_if(
            db, order_id,
            {"status": OrderStatus.PENDING_PAYMENT},
            {
                "payment_status": PaymentStatus.COMPLETED,
                "gateway_payment_id": payment_id,
                "paid_at": utcnow(),
                **status_fields(OrderStatus.PAID, order.print_status, PaymentStatus.COMPLETED),
            },
            # a late capture may still rescue an expired (failed) payment
            Order.payment_status != PaymentStatus.COMPLETED.value,
        )
        await db.commit()
        if not applied:
            logger.info("payment.confirm_lost_race", order_id=order_id, source=source)
            return False

        payment_confirmations_total.labels(source=source).inc()
        await AuditRepository.record(
            db, "payment_confirmed", order_id, source,
            previous_status=OrderStatus.PENDING_PAYMENT.value,
            new_status=OrderStatus.PAID.value,
            reason=f"Payment confirmed via {source}",
            details={"payment_id": payment_id, "previous_payment_status": previous_payment},
        )
        logger.info("payment.confirmed", order_id=order_id, payment_id=payment_id, source=source)

        order = await OrderRepository.get_order(db, order_id)
        (notifier or default_notifier).dispatch(PAYMENT_COMPLETED, order_snapshot(order))

        if order.file_url:
            try:
                await PrintService.enqueue_order(db, order, dispatcher or print_dispatcher, actor=source)
            except SQLAlchemyError:
                # Payment stays confirmed; an operator can queue it with a reprint
                await db.rollback()
                logger.exception("payment.enqueue_failed", order_id=order_id)
        return True

    @staticmethod
    async def handle_webhook(db: AsyncSession, body: bytes, signature: Optional[str],
                             dispatcher=None, notifier=None) -> dict:
        if not verify_signature(body, signature, settings.GATEWAY_WEBHOOK_SECRET):
            raise InvalidSignature("Invalid webhook signature")

        try:
            event = json.loads(body)
        except ValueError:
            raise TransitionRejected("Webhook body is not valid JSON")

        name = event.get("event")
        payload = event.get("payload") or {}
        payment = (payload.get("payment") or {}).get("entity") or {}
        gateway_order = (payload.get("order") or {}).get("entity") or {}
        gateway_order_id = payment.get("order_id") or gateway_order.get("id")

        if name == "payment.failed":
            # The customer can retry; abandoned orders are expired by reconciliation
            logger.warning("payment.webhook_failed", gateway_order_id=gateway_order_id,
                           payment_id=payment.get("id"),
                           error=payment.get("error_description"))
            return {"event": name, "handled": False}

        if name not in CONFIRMING_EVENTS:
            logger.info("payment.webhook_ignored", webhook_event=name)
            return {"event": name, "handled": False}

        order = await OrderRepository.get_by_gateway_order(db, gateway_order_id) if gateway_order_id else None
        if order is None:
            logger.warning("payment.webhook_unknown_order", gateway_order_id=gateway_order_id)
            return {"event": name, "handled": False}

        applied = await PaymentService.confirm_payment(
            db, order.order_id, payment.get("id"), "webhook", dispatcher, notifier,
        )
        return {"event": name, "handled": True, "order_id": order.order_id, "applied": applied}

    @staticmethod
    async def verify_checkout(
        db: AsyncSession,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
        gateway: Optional[PaymentGatewayClient] = None,
        dispatcher=None,
        notifier=None,
    ) -> dict:
        """
        Confirms a payment reported by the customer's browser after checkout.
        A bad signature falls back to asking the gateway directly.
        """
        order = await OrderRepository.get_by_gateway_order(db, gateway_order_id)
        if order is None:
            raise OrderNotFound(f"No order for gateway order {gateway_order_id}")

        message = f"{gateway_order_id}|{payment_id}".encode()
        if not verify_signature(message, signature, settings.GATEWAY_KEY_SECRET):
            logger.warning("payment.checkout_signature_invalid", order_id=order.order_id)
            try:
                lookup = await (gateway or default_gateway).lookup_order_status(gateway_order_id)
            except GatewayUnavailable as exc:
                logger.warning("payment.checkout_fallback_unavailable", order_id=order.order_id, error=str(exc))
                raise InvalidSignature("Invalid payment signature")
            if lookup.status != PAID:
                raise InvalidSignature("Invalid payment signature")
            payment_id = lookup.payment_id or payment_id

        applied = await PaymentService.confirm_payment(
            db, order.order_id, payment_id, "checkout", dispatcher, notifier,
        )
        return {"order_id": order.order_id, "applied": applied}
