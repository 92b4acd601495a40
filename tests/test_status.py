import pytest

from services.payment_service.status import (
    PaymentStatus,
    can_transition,
    is_success,
    is_terminal,
    normalize_status,
)


@pytest.mark.parametrize("raw, expected", [
    ("COMPLETED", "completed"),
    (" Pending ", "pending"),
    ("cancelled duplicate", "cancelled duplicate"),
    (None, "failed"),
    ("", "failed"),
])
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


@pytest.mark.parametrize("status", ["completed", "completed_", "success", "paid"])
def test_success_variants(status):
    assert is_success(status)
    assert is_terminal(status)


@pytest.mark.parametrize("status", ["new", "pending", "pending internal", "confirming"])
def test_non_terminal_statuses(status):
    assert not is_success(status)
    assert not is_terminal(status)


@pytest.mark.parametrize("status", ["mismatch", "expired", "cancelled", "cancelled duplicate", "failed", "error"])
def test_terminal_failures(status):
    assert is_terminal(status)
    assert not is_success(status)


def test_pending_may_complete():
    assert can_transition(PaymentStatus.PENDING.value, PaymentStatus.COMPLETED.value)


def test_terminal_record_is_frozen():
    assert not can_transition("completed", "expired")
    assert not can_transition("expired", "completed")


def test_same_status_is_not_a_transition():
    assert not can_transition("pending", "pending")


def test_unknown_status_passes_through():
    assert can_transition("new", "confirming")
    assert can_transition("confirming", "completed")
