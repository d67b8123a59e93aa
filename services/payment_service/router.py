from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.config.database import get_db
from shared.errors import OrderNotFound, TransitionRejected
from shared.security import limiter
from shared.security.dependencies import verify_internal_api_key

from .reconciliation import payment_reconciler
from .schemas import (
    CheckoutVerification,
    OrderCheckResponse,
    PaymentConfirmationResponse,
    ReconciliationReportResponse,
    ReconcileStartRequest,
    WebhookResponse,
)
from .service import InvalidSignature, PaymentService

# Cron callers and the storefront backend
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
# The gateway authenticates itself with the webhook signature
public_router = APIRouter()


def get_reconciler():
    return payment_reconciler


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "payment", "status": "running", "reconciliation_running": payment_reconciler.is_running}


@public_router.post("/webhook", response_model=WebhookResponse)
async def webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    body = await request.body()
    try:
        return await PaymentService.handle_webhook(db, body, x_razorpay_signature)
    except InvalidSignature as e:
        raise HTTPException(status_code=401, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)


@router.post("/verify", response_model=PaymentConfirmationResponse)
async def verify_checkout(payload: CheckoutVerification, db: AsyncSession = Depends(get_db)):
    try:
        return await PaymentService.verify_checkout(
            db, payload.gateway_order_id, payload.payment_id, payload.signature,
        )
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidSignature as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)


@router.post("/reconcile", response_model=ReconciliationReportResponse)
@limiter.limit(settings.RECONCILE_RATE_LIMIT)
async def reconcile(
    request: Request,
    min_age_minutes: Optional[int] = Query(None, ge=0),
    reconciler=Depends(get_reconciler),
):
    return asdict(await reconciler.reconcile(min_age_minutes))


@router.post("/reconcile/run", response_model=ReconciliationReportResponse)
@limiter.limit(settings.RECONCILE_RATE_LIMIT)
async def run_pass(request: Request, reconciler=Depends(get_reconciler)):
    """Full pass: reconcile, reminders, expiry. What the scheduled loop runs."""
    return asdict(await reconciler.run_pass())


@router.get("/reconcile/status")
async def reconcile_status(reconciler=Depends(get_reconciler)):
    return reconciler.get_status()


@router.post("/reconcile/start")
async def reconcile_start(payload: Optional[ReconcileStartRequest] = None, reconciler=Depends(get_reconciler)):
    changed = reconciler.start(payload.interval_seconds if payload else None)
    return {"running": reconciler.is_running, "changed": changed}


@router.post("/reconcile/stop")
async def reconcile_stop(reconciler=Depends(get_reconciler)):
    changed = reconciler.stop()
    return {"running": reconciler.is_running, "changed": changed}


@router.post("/orders/{order_id}/check", response_model=OrderCheckResponse)
async def check_order(order_id: str, reconciler=Depends(get_reconciler)):
    try:
        outcome = await reconciler.check_order(order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransitionRejected as e:
        raise HTTPException(status_code=400, detail=e.reason)
    return OrderCheckResponse(order_id=order_id, outcome=outcome)
