from datetime import datetime
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field

from shared.lifecycle import OrderStatus


class PrintingOptions(BaseModel):
    page_size: Literal["A4", "A3", "Letter"] = "A4"
    color: Literal["bw", "color", "mixed"] = "bw"
    sided: Literal["single", "double"] = "single"
    copies: int = Field(1, ge=1)
    page_count: int = Field(1, ge=1)


class OrderCreate(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=64)
    amount: float = Field(..., gt=0)
    gateway_order_id: Optional[str] = None # set when the payment was initiated
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = "application/pdf"
    printing_options: PrintingOptions = PrintingOptions()


class OrderResponse(BaseModel):
    order_id: str
    amount: float
    payment_status: str
    status: str
    order_status: str
    print_status: Optional[str]
    print_job_id: Optional[str]
    printer_name: Optional[str]
    printing_by: Optional[str]
    print_started_at: Optional[datetime]
    print_completed_at: Optional[datetime]
    print_error: Optional[str]
    gateway_order_id: Optional[str]
    gateway_payment_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class OrderSnapshot(BaseModel):
    """What collaborators (notifications) get to see of an order."""
    order_id: str
    amount: float
    payment_status: str
    status: str
    order_status: str
    print_status: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    file_name: Optional[str] = None
    printing_options: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


def order_snapshot(order) -> dict:
    return OrderSnapshot.model_validate(order).model_dump(mode="json")


class StatusTransitionRequest(BaseModel):
    status: OrderStatus
    is_admin_override: bool = False
    reason: Optional[str] = None


class PrintActionRequest(BaseModel):
    reason: Optional[str] = None
    confirmed: bool = False


class PrintActionResponse(BaseModel):
    action: str
    order_id: str
    previous_status: Optional[str]
    new_status: Optional[str]
    message: str


class PrintActionLogResponse(BaseModel):
    action: str
    order_id: str
    print_job_id: Optional[str]
    actor: str
    previous_status: Optional[str]
    new_status: Optional[str]
    reason: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True
