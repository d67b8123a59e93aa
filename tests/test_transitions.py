"""State machine tables, validators and the derived status pair."""
import pytest

from shared.lifecycle import (
    ORDER_ADMIN_OVERRIDES,
    ORDER_STATUS_TRANSITIONS,
    BusinessStatus,
    OrderStatus,
    PrintStatus,
    status_fields,
    validate_order_transition,
    validate_print_transition,
)


@pytest.mark.parametrize("current,target", [
    (None, "pending"),
    ("pending", "printing"),
    ("printing", "printed"),
    ("printing", "failed"),
    ("printing", "pending"),
    ("failed", "pending"),
])
def test_print_transitions_in_table_are_allowed(current, target):
    result = validate_print_transition(current, target)
    assert result.allowed
    assert result.reason is None


@pytest.mark.parametrize("current,target", [
    ("pending", "printed"),
    ("printed", "pending"),
    ("printed", "printing"),
    ("failed", "printed"),
    (None, "printing"),
])
def test_print_transitions_outside_table_are_denied_with_reason(current, target):
    result = validate_print_transition(current, target)
    assert not result.allowed
    assert "not allowed" in result.reason


def test_denial_lists_allowed_targets():
    result = validate_print_transition("printing", "printing")
    assert result.reason.endswith("failed, pending, printed.")

    result = validate_print_transition("printed", "failed")
    assert "Allowed transitions from 'printed': none." in result.reason


def test_admin_override_reaches_only_pending_and_printed():
    assert validate_print_transition("printed", "pending", is_admin_override=True).allowed
    assert validate_print_transition("pending", "printed", is_admin_override=True).allowed
    assert validate_print_transition(None, "printed", is_admin_override=True).allowed
    assert not validate_print_transition("pending", "failed", is_admin_override=True).allowed


def test_unknown_states_never_raise():
    result = validate_print_transition("jammed", "pending")
    assert not result.allowed
    assert "Invalid print status 'jammed'" in result.reason

    result = validate_order_transition("paid", "shipped")
    assert not result.allowed
    assert "Invalid target order status 'shipped'" in result.reason

    assert not validate_order_transition(None, "paid").allowed


def test_order_table_forward_path():
    path = ["draft", "pending_payment", "paid", "processing", "printing", "dispatched", "delivered", "refunded"]
    for current, target in zip(path, path[1:]):
        assert validate_order_transition(current, target).allowed, (current, target)


def test_refunded_is_terminal_even_with_override():
    for target in OrderStatus:
        assert not validate_order_transition("refunded", target, is_admin_override=True).allowed


def test_order_override_allow_list():
    assert not validate_order_transition("delivered", "dispatched").allowed
    result = validate_order_transition("delivered", "dispatched", is_admin_override=True)
    assert result.allowed
    assert result.reason == "Admin override: delivered -> dispatched"

    # Not on the list: override does not help
    assert not validate_order_transition("pending_payment", "delivered", is_admin_override=True).allowed
    assert not validate_order_transition("dispatched", "paid", is_admin_override=True).allowed


def test_override_list_only_adds_pairs_missing_from_table():
    for current, target in ORDER_ADMIN_OVERRIDES:
        assert target not in ORDER_STATUS_TRANSITIONS[current]


@pytest.mark.parametrize("status,print_status,payment_status,expected", [
    ("pending_payment", None, "pending", "pending"),
    ("paid", None, "completed", "pending"),
    ("paid", "printing", "completed", "printing"),
    ("printing", "printed", "completed", "printing"),
    ("paid", "failed", "completed", "failed"),
    ("pending_payment", None, "failed", "failed"),
    ("dispatched", "printed", "completed", "dispatched"),
    ("delivered", "printed", "completed", "delivered"),
    ("refunded", "printed", "completed", "cancelled"),
])
def test_status_fields_derives_business_status(status, print_status, payment_status, expected):
    assert status_fields(status, print_status, payment_status) == {
        "status": status,
        "order_status": expected,
    }


def test_refund_outranks_a_failed_print():
    fields = status_fields(OrderStatus.REFUNDED, PrintStatus.FAILED)
    assert fields == {"status": "refunded", "order_status": BusinessStatus.CANCELLED.value}
