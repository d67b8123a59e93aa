"""
Safety guards for admin print actions.

A guard is a predicate over an ActionContext returning a TransitionResult.
Guards run before the transition table; the admin override flag widens the
table but never skips a guard.
"""
from dataclasses import dataclass
from typing import Callable, Optional

from .states import PaymentStatus, PrintStatus, coerce
from .transitions import TransitionResult, validate_print_transition

Guard = Callable[["ActionContext"], TransitionResult]


@dataclass(frozen=True)
class ActionContext:
    print_status: Optional[str]
    payment_status: Optional[str]
    reason: Optional[str] = None
    confirmed: bool = False


def not_while_printing(message: str) -> Guard:
    def guard(ctx: ActionContext) -> TransitionResult:
        if coerce(PrintStatus, ctx.print_status) is PrintStatus.PRINTING:
            return TransitionResult.deny(message)
        return TransitionResult.ok()
    return guard


def requires_confirmation(ctx: ActionContext) -> TransitionResult:
    if ctx.confirmed is not True:
        return TransitionResult.deny(
            "Confirmation required for force-printed action. Set confirmed: true."
        )
    return TransitionResult.ok()


def requires_reason(ctx: ActionContext) -> TransitionResult:
    if not ctx.reason or not ctx.reason.strip():
        return TransitionResult.deny("Reason is required for force-printed action")
    return TransitionResult.ok()


def not_paid(ctx: ActionContext) -> TransitionResult:
    if coerce(PaymentStatus, ctx.payment_status) is PaymentStatus.COMPLETED:
        return TransitionResult.deny(
            "Cannot remove a paid order from the print queue. Reprint or refund it instead."
        )
    return TransitionResult.ok()


def only_from(*statuses: PrintStatus) -> Guard:
    allowed = frozenset(statuses)

    def guard(ctx: ActionContext) -> TransitionResult:
        if coerce(PrintStatus, ctx.print_status) not in allowed:
            names = ", ".join(sorted(s.value for s in allowed))
            return TransitionResult.deny(
                f"Only orders with print status {names} can use this action "
                f"(current: {ctx.print_status or 'not queued'})"
            )
        return TransitionResult.ok()
    return guard


def check_guards(ctx: ActionContext, *guards: Guard) -> TransitionResult:
    for guard in guards:
        result = guard(ctx)
        if not result.allowed:
            return result
    return TransitionResult.ok()


@dataclass(frozen=True)
class PrintAction:
    name: str
    guards: tuple
    target: Optional[PrintStatus]  # None: the order leaves the print queue
    admin_override: bool = True


PRINT_ACTIONS: dict[str, PrintAction] = {
    "reprint": PrintAction(
        name="reprint",
        guards=(not_while_printing(
            "Cannot reprint an order that is currently printing. Reset it first."
        ),),
        target=PrintStatus.PENDING,
    ),
    "remove_from_queue": PrintAction(
        name="remove_from_queue",
        guards=(
            not_while_printing(
                "Cannot remove an order that is currently printing. Reset it first."
            ),
            not_paid,
        ),
        target=None,
        admin_override=False,
    ),
    "reset_printing": PrintAction(
        name="reset_printing",
        guards=(only_from(PrintStatus.PRINTING),),
        target=PrintStatus.PENDING,
    ),
    "force_printed": PrintAction(
        name="force_printed",
        guards=(requires_confirmation, requires_reason),
        target=PrintStatus.PRINTED,
    ),
}


def evaluate_print_action(action: str, ctx: ActionContext) -> TransitionResult:
    rule = PRINT_ACTIONS.get(action)
    if rule is None:
        return TransitionResult.deny(f"Unknown print action '{action}'")

    result = check_guards(ctx, *rule.guards)
    if not result.allowed:
        return result
    if rule.target is None:
        return TransitionResult.ok()
    return validate_print_transition(ctx.print_status, rule.target, rule.admin_override)
