"""
Transition tables for the two order state machines.

Both validators are pure and never raise: every call returns a
TransitionResult, and every denial carries a reason.
"""
from dataclasses import dataclass
from typing import Optional

from .states import (
    BusinessStatus,
    OrderStatus,
    PaymentStatus,
    PrintStatus,
    coerce,
)


@dataclass(frozen=True)
class TransitionResult:
    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls, reason: Optional[str] = None) -> "TransitionResult":
        return cls(True, reason)

    @classmethod
    def deny(cls, reason: str) -> "TransitionResult":
        return cls(False, reason)


# --- PRINT STATUS ---

PRINT_STATUS_TRANSITIONS: dict[Optional[PrintStatus], frozenset] = {
    None: frozenset({PrintStatus.PENDING}),  # entering the queue
    PrintStatus.PENDING: frozenset({PrintStatus.PRINTING}),
    PrintStatus.PRINTING: frozenset(
        {PrintStatus.PRINTED, PrintStatus.FAILED, PrintStatus.PENDING}
    ),
    PrintStatus.FAILED: frozenset({PrintStatus.PENDING}),
    PrintStatus.PRINTED: frozenset(),
}

# With an explicit admin override any state may be reset or force-completed
PRINT_STATUS_ADMIN_TARGETS = frozenset({PrintStatus.PENDING, PrintStatus.PRINTED})


def _names(states) -> str:
    names = sorted(s.value for s in states)
    return ", ".join(names) if names else "none"


def validate_print_transition(current, target, is_admin_override: bool = False) -> TransitionResult:
    from_state = coerce(PrintStatus, current)
    to_state = coerce(PrintStatus, target)

    if current is not None and from_state is None:
        return TransitionResult.deny(
            f"Invalid print status '{current}'. Must be one of: {_names(PrintStatus)}."
        )
    if to_state is None:
        return TransitionResult.deny(
            f"Invalid target print status '{target}'. Must be one of: {_names(PrintStatus)}."
        )

    allowed = PRINT_STATUS_TRANSITIONS[from_state]
    if to_state in allowed:
        return TransitionResult.ok()

    label = from_state.value if from_state else "not queued"
    if is_admin_override and to_state in PRINT_STATUS_ADMIN_TARGETS:
        return TransitionResult.ok(f"Admin override: {label} -> {to_state.value}")

    return TransitionResult.deny(
        f"Transition from '{label}' to '{to_state.value}' is not allowed. "
        f"Allowed transitions from '{label}': {_names(allowed)}."
    )


# --- ORDER STATUS ---

ORDER_STATUS_TRANSITIONS: dict[OrderStatus, frozenset] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.PENDING_PAYMENT}),
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.PAID}),
    OrderStatus.PAID: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.PRINTING, OrderStatus.REFUNDED}
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.PRINTING, OrderStatus.REFUNDED}),
    OrderStatus.PRINTING: frozenset({OrderStatus.DISPATCHED, OrderStatus.REFUNDED}),
    OrderStatus.DISPATCHED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}

# Corrections an operator may apply without fabricating intermediate events
ORDER_ADMIN_OVERRIDES = frozenset({
    # forward
    (OrderStatus.PAID, OrderStatus.PRINTING),
    (OrderStatus.PAID, OrderStatus.DISPATCHED),
    (OrderStatus.PAID, OrderStatus.DELIVERED),
    (OrderStatus.PROCESSING, OrderStatus.DISPATCHED),
    (OrderStatus.PROCESSING, OrderStatus.DELIVERED),
    (OrderStatus.PRINTING, OrderStatus.DELIVERED),
    # backward
    (OrderStatus.PRINTING, OrderStatus.PROCESSING),
    (OrderStatus.DISPATCHED, OrderStatus.PRINTING),
    (OrderStatus.DELIVERED, OrderStatus.DISPATCHED),
    (OrderStatus.DELIVERED, OrderStatus.PRINTING),
    (OrderStatus.DELIVERED, OrderStatus.PROCESSING),
})


def validate_order_transition(current, target, is_admin_override: bool = False) -> TransitionResult:
    from_state = coerce(OrderStatus, current)
    to_state = coerce(OrderStatus, target)

    if from_state is None:
        return TransitionResult.deny(
            f"Invalid order status '{current}'. Must be one of: {_names(OrderStatus)}."
        )
    if to_state is None:
        return TransitionResult.deny(
            f"Invalid target order status '{target}'. Must be one of: {_names(OrderStatus)}."
        )

    if to_state in ORDER_STATUS_TRANSITIONS[from_state]:
        return TransitionResult.ok()

    if is_admin_override and (from_state, to_state) in ORDER_ADMIN_OVERRIDES:
        return TransitionResult.ok(
            f"Admin override: {from_state.value} -> {to_state.value}"
        )

    return TransitionResult.deny(
        f"Transition from {from_state.value} to {to_state.value} is not allowed"
    )


# --- DERIVED STATUS PAIR ---

_BUSINESS_BY_STATUS = {
    OrderStatus.DRAFT: BusinessStatus.PENDING,
    OrderStatus.PENDING_PAYMENT: BusinessStatus.PENDING,
    OrderStatus.PAID: BusinessStatus.PENDING,
    OrderStatus.PROCESSING: BusinessStatus.PENDING,
    OrderStatus.PRINTING: BusinessStatus.PRINTING,
    OrderStatus.DISPATCHED: BusinessStatus.DISPATCHED,
    OrderStatus.DELIVERED: BusinessStatus.DELIVERED,
    OrderStatus.REFUNDED: BusinessStatus.CANCELLED,
}


def status_fields(status, print_status=None, payment_status=None) -> dict:
    """
    The one place `status` and `order_status` are derived together.

    Callers write the returned dict in the same UPDATE so the pair cannot
    drift apart.
    """
    status = OrderStatus(status)
    print_status = coerce(PrintStatus, print_status)
    payment_status = coerce(PaymentStatus, payment_status)

    if status in (OrderStatus.DISPATCHED, OrderStatus.DELIVERED, OrderStatus.REFUNDED):
        business = _BUSINESS_BY_STATUS[status]
    elif print_status is PrintStatus.FAILED or payment_status is PaymentStatus.FAILED:
        business = BusinessStatus.FAILED
    elif print_status is PrintStatus.PRINTING:
        business = BusinessStatus.PRINTING
    else:
        business = _BUSINESS_BY_STATUS[status]

    return {"status": status.value, "order_status": business.value}
