from .states import (
    BusinessStatus,
    OrderStatus,
    PaymentStatus,
    PrinterStatus,
    PrintJobStatus,
    PrintStatus,
)
from .transitions import (
    ORDER_ADMIN_OVERRIDES,
    ORDER_STATUS_TRANSITIONS,
    PRINT_STATUS_ADMIN_TARGETS,
    PRINT_STATUS_TRANSITIONS,
    TransitionResult,
    status_fields,
    validate_order_transition,
    validate_print_transition,
)
from .guards import (
    PRINT_ACTIONS,
    ActionContext,
    check_guards,
    evaluate_print_action,
)

__all__ = [
    "BusinessStatus",
    "OrderStatus",
    "PaymentStatus",
    "PrinterStatus",
    "PrintJobStatus",
    "PrintStatus",
    "ORDER_ADMIN_OVERRIDES",
    "ORDER_STATUS_TRANSITIONS",
    "PRINT_STATUS_ADMIN_TARGETS",
    "PRINT_STATUS_TRANSITIONS",
    "TransitionResult",
    "status_fields",
    "validate_order_transition",
    "validate_print_transition",
    "PRINT_ACTIONS",
    "ActionContext",
    "check_guards",
    "evaluate_print_action",
]
