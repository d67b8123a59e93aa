"""Admin print actions: guards, then the conditional order + job write."""
import pytest

from conftest import add_printer, make_order, queue_order
from shared.config.database import AsyncSessionLocal
from shared.errors import TransitionConflict, TransitionRejected
from shared.lifecycle import ActionContext, OrderStatus, evaluate_print_action
from services.order_service.repository import OrderRepository
from services.order_service.service import OrderService
from services.print_service.repository import PrinterRepository, PrintJobRepository


# --- guards (pure) ---

def test_reprint_blocked_while_printing():
    result = evaluate_print_action("reprint", ActionContext("printing", "completed"))
    assert not result.allowed
    assert result.reason == "Cannot reprint an order that is currently printing. Reset it first."


def test_reprint_of_printed_order_uses_override():
    result = evaluate_print_action("reprint", ActionContext("printed", "completed"))
    assert result.allowed
    assert result.reason.startswith("Admin override")


def test_force_printed_needs_confirmation_then_reason():
    result = evaluate_print_action("force_printed", ActionContext("failed", "completed", reason="jam cleared"))
    assert not result.allowed
    assert "Confirmation required" in result.reason

    result = evaluate_print_action("force_printed", ActionContext("failed", "completed", confirmed=True))
    assert not result.allowed
    assert "Reason is required" in result.reason

    result = evaluate_print_action(
        "force_printed", ActionContext("failed", "completed", reason="printed by hand", confirmed=True)
    )
    assert result.allowed


def test_remove_from_queue_blocked_once_paid():
    result = evaluate_print_action("remove_from_queue", ActionContext("pending", "completed"))
    assert not result.allowed
    assert "paid order" in result.reason
    assert evaluate_print_action("remove_from_queue", ActionContext("pending", "pending")).allowed


def test_reset_only_from_printing():
    assert evaluate_print_action("reset_printing", ActionContext("printing", "completed")).allowed
    result = evaluate_print_action("reset_printing", ActionContext("pending", "completed"))
    assert not result.allowed
    assert "current: pending" in result.reason


def test_unknown_action_denied():
    assert not evaluate_print_action("shred", ActionContext(None, "completed")).allowed


# --- service ---

needs_db = pytest.mark.usefixtures("database")


@needs_db
async def test_reset_printing_requeues_job_and_releases_printer(dispatcher, stub_dispatcher):
    job = await queue_order("ORD-1")
    printer = await add_printer()
    await dispatcher.process_queue_once()

    async with AsyncSessionLocal() as db:
        result = await OrderService.perform_print_action(
            db, "ORD-1", "reset_printing", "admin@printshop.test",
            reason="Printer jammed", dispatcher=stub_dispatcher,
        )
    assert result["previous_status"] == "printing"
    assert result["new_status"] == "pending"

    async with AsyncSessionLocal() as db:
        order = await OrderRepository.get_order(db, "ORD-1")
        job = await PrintJobRepository.get(db, job.id)
        printer = await PrinterRepository.get(db, printer.id)
        logs = await OrderRepository.list_logs(db, "ORD-1")

    assert order.print_status == "pending"
    assert order.printing_by is None
    assert order.print_error == "Printer jammed"
    assert job.status == "pending"
    assert job.worker_id is None
    assert job.retry_count == 0
    assert printer.status == "idle"
    assert printer.current_job_id is None
    assert logs[-1].action == "reset_printing"
    assert logs[-1].actor == "admin@printshop.test"
    assert logs[-1].previous_status == "printing"


@needs_db
async def test_reprint_of_printed_order(dispatcher, stub_dispatcher):
    job = await queue_order("ORD-1")
    await add_printer()
    await dispatcher.process_queue_once()
    await dispatcher.report_completed(job.id, "worker-a")

    async with AsyncSessionLocal() as db:
        await OrderService.perform_print_action(
            db, "ORD-1", "reprint", "admin@printshop.test", dispatcher=stub_dispatcher,
        )

    async with AsyncSessionLocal() as db:
        order = await OrderRepository.get_order(db, "ORD-1")
        job = await PrintJobRepository.get(db, job.id)
    assert order.print_status == "pending"
    assert order.print_completed_at is None
    assert job.status == "pending"
    assert job.completed_at is None
    assert stub_dispatcher.triggered == 1


@needs_db
async def test_reprint_creates_missing_job(stub_dispatcher):
    await make_order("ORD-1", print_status="failed")

    async with AsyncSessionLocal() as db:
        await OrderService.perform_print_action(
            db, "ORD-1", "reprint", "admin@printshop.test", dispatcher=stub_dispatcher,
        )

    async with AsyncSessionLocal() as db:
        order = await OrderRepository.get_order(db, "ORD-1")
        job = await PrintJobRepository.get_by_order(db, "ORD-1")
    assert job is not None
    assert job.status == "pending"
    assert order.print_job_id == str(job.id)


@needs_db
async def test_reprint_while_printing_is_rejected(dispatcher):
    await queue_order("ORD-1")
    await add_printer()
    await dispatcher.process_queue_once()

    async with AsyncSessionLocal() as db:
        with pytest.raises(TransitionRejected, match="currently printing"):
            await OrderService.perform_print_action(
                db, "ORD-1", "reprint", "admin@printshop.test", dispatcher=dispatcher,
            )


@needs_db
async def test_force_printed_completes_job(dispatcher, stub_dispatcher):
    job = await queue_order("ORD-1")
    printer = await add_printer()
    await dispatcher.process_queue_once()

    async with AsyncSessionLocal() as db:
        await OrderService.perform_print_action(
            db, "ORD-1", "force_printed", "admin@printshop.test",
            reason="Printed manually", confirmed=True, dispatcher=stub_dispatcher,
        )

    async with AsyncSessionLocal() as db:
        order = await OrderRepository.get_order(db, "ORD-1")
        job = await PrintJobRepository.get(db, job.id)
        printer = await PrinterRepository.get(db, printer.id)
    assert order.print_status == "printed"
    assert order.print_completed_at is not None
    assert job.status == "completed"
    assert printer.status == "idle"


@needs_db
async def test_remove_unpaid_order_from_queue(stub_dispatcher):
    await make_order("ORD-1", paid=False, print_status="pending")

    async with AsyncSessionLocal() as db:
        result = await OrderService.perform_print_action(
            db, "ORD-1", "remove_from_queue", "admin@printshop.test", dispatcher=stub_dispatcher,
        )
    assert result["new_status"] is None

    async with AsyncSessionLocal() as db:
        order = await OrderRepository.get_order(db, "ORD-1")
    assert order.print_status is None


@needs_db
async def test_remove_order_not_in_queue_is_rejected(stub_dispatcher):
    await make_order("ORD-1", paid=False)
    async with AsyncSessionLocal() as db:
        with pytest.raises(TransitionRejected, match="not in the print queue"):
            await OrderService.perform_print_action(
                db, "ORD-1", "remove_from_queue", "admin@printshop.test", dispatcher=stub_dispatcher,
            )


@needs_db
async def test_stale_read_surfaces_as_conflict(stub_dispatcher, monkeypatch):
    await make_order("ORD-1", print_status="failed")
    stale = await make_order("ORD-2", print_status="failed")
    stale.order_id = "ORD-1"
    stale.print_status = "printed"  # what the admin saw before someone else moved it

    async def stale_get(db, order_id):
        return stale

    monkeypatch.setattr(OrderRepository, "get_order", staticmethod(stale_get))
    async with AsyncSessionLocal() as db:
        with pytest.raises(TransitionConflict):
            await OrderService.perform_print_action(
                db, "ORD-1", "reprint", "admin@printshop.test", dispatcher=stub_dispatcher,
            )


# --- order status transitions ---

@needs_db
async def test_transition_status_validates_and_writes_pair():
    await make_order("ORD-1")
    async with AsyncSessionLocal() as db:
        order = await OrderService.transition_status(db, "ORD-1", OrderStatus.PROCESSING, "admin")
    assert order.status == "processing"
    assert order.order_status == "pending"

    async with AsyncSessionLocal() as db:
        with pytest.raises(TransitionRejected, match="not allowed"):
            await OrderService.transition_status(db, "ORD-1", OrderStatus.DELIVERED, "admin")
        order = await OrderService.transition_status(
            db, "ORD-1", OrderStatus.DELIVERED, "admin", is_admin_override=True, reason="Picked up at desk",
        )
    assert order.status == "delivered"
    assert order.order_status == "delivered"


@needs_db
async def test_paid_is_reserved_for_payment_confirmation():
    await make_order("ORD-1", paid=False)
    async with AsyncSessionLocal() as db:
        with pytest.raises(TransitionRejected, match="payment confirmation"):
            await OrderService.transition_status(db, "ORD-1", OrderStatus.PAID, "admin")
