from enum import Enum


class PaymentStatus(str, Enum):
    """Statuses the core knows about.

    Status values are stored as plain strings; the gateway may report values
    outside this set and those are passed through untouched.
    """

    NEW = "new"
    PENDING = "pending"
    PENDING_INTERNAL = "pending internal"
    COMPLETED = "completed"
    MISMATCH = "mismatch"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    CANCELLED_DUPLICATE = "cancelled duplicate"
    FAILED = "failed"
    ERROR = "error"


_SUCCESS_ALIASES = frozenset({"success", "paid"})
_TERMINAL = frozenset({
    PaymentStatus.MISMATCH.value,
    PaymentStatus.EXPIRED.value,
    PaymentStatus.FAILED.value,
    PaymentStatus.ERROR.value,
})


def normalize_status(raw, default: str = PaymentStatus.FAILED.value) -> str:
    if raw is None:
        return default
    value = str(raw).strip().lower()
    return value or default


def is_success(status: str) -> bool:
    # Drifted values such as "completed_" still count as paid
    return status.startswith(PaymentStatus.COMPLETED.value) or status in _SUCCESS_ALIASES


def is_terminal(status: str) -> bool:
    return is_success(status) or status in _TERMINAL or status.startswith(PaymentStatus.CANCELLED.value)


def can_transition(current: str, new: str) -> bool:
    """Terminal records are frozen; everything else may move anywhere."""
    if current == new:
        return False
    return not is_terminal(current)
