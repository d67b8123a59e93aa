from .client import (
    NotificationClient,
    notifier,
    PAYMENT_COMPLETED,
    PAYMENT_REMINDER,
    ORDER_EXPIRED,
    PRINT_FAILED,
)

__all__ = [
    "NotificationClient",
    "notifier",
    "PAYMENT_COMPLETED",
    "PAYMENT_REMINDER",
    "ORDER_EXPIRED",
    "PRINT_FAILED",
]
