from typing import Optional
from pydantic import BaseModel, Field


class CheckoutVerification(BaseModel):
    gateway_order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class PaymentConfirmationResponse(BaseModel):
    order_id: str
    applied: bool


class WebhookResponse(BaseModel):
    event: Optional[str]
    handled: bool
    order_id: Optional[str] = None
    applied: Optional[bool] = None


class OrderCheckResponse(BaseModel):
    order_id: str
    outcome: str


class ReconcileStartRequest(BaseModel):
    interval_seconds: Optional[float] = Field(None, gt=0)


class ReconciliationReportResponse(BaseModel):
    checked: int
    confirmed: int
    already_applied: int
    failed: int
    unreachable: int
    still_pending: int
    errors: int
    reminders_sent: int
    expired: int
