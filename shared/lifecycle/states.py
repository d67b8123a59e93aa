from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class OrderStatus(str, Enum):
    """Canonical order state machine (the `status` column)."""
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    PROCESSING = "processing"
    PRINTING = "printing"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    REFUNDED = "refunded"


class BusinessStatus(str, Enum):
    """Coarse workflow status (the `order_status` column), derived from OrderStatus."""
    PENDING = "pending"
    PRINTING = "printing"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PrintStatus(str, Enum):
    PENDING = "pending"
    PRINTING = "printing"
    PRINTED = "printed"
    FAILED = "failed"


class PrintJobStatus(str, Enum):
    PENDING = "pending"
    PRINTING = "printing"
    COMPLETED = "completed"
    FAILED = "failed"


class PrinterStatus(str, Enum):
    OFFLINE = "offline"
    IDLE = "idle"
    BUSY = "busy"


def coerce(enum_cls, value):
    """Returns the enum member for `value`, or None when it is not a known state."""
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None
