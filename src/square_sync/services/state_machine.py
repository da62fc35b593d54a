"""Gateway → CRM status mapping and the recurring-contribution state machine.

All mapping functions are pure. Gateway status strings are normalized
(trimmed, upper-cased) and parsed into enums first; the enum → CRM tables
are exhaustive over the enum, so adding a gateway status means adding a row.
"""

from __future__ import annotations

from enum import Enum

from square_sync.errors import InvalidTransitionError


class ContributionStatus(str, Enum):
    """CRM contribution status values."""

    COMPLETED = "Completed"
    PENDING = "Pending"
    CANCELLED = "Cancelled"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class RecurStatus(str, Enum):
    """CRM recurring contribution status values."""

    PENDING = "Pending"
    ACTIVE = "Active"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


class GatewayPaymentStatus(str, Enum):
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    FAILED = "FAILED"
    VOIDED = "VOIDED"
    AUTHORIZED = "AUTHORIZED"


class GatewaySubscriptionStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    DEACTIVATED = "DEACTIVATED"
    SUSPENDED = "SUSPENDED"


PAYMENT_STATUS_MAP: dict[GatewayPaymentStatus, ContributionStatus] = {
    GatewayPaymentStatus.APPROVED: ContributionStatus.COMPLETED,
    GatewayPaymentStatus.COMPLETED: ContributionStatus.COMPLETED,
    GatewayPaymentStatus.PENDING: ContributionStatus.PENDING,
    GatewayPaymentStatus.AUTHORIZED: ContributionStatus.PENDING,
    GatewayPaymentStatus.CANCELED: ContributionStatus.CANCELLED,
    GatewayPaymentStatus.VOIDED: ContributionStatus.CANCELLED,
    GatewayPaymentStatus.FAILED: ContributionStatus.FAILED,
}

SUBSCRIPTION_STATUS_MAP: dict[GatewaySubscriptionStatus, RecurStatus] = {
    GatewaySubscriptionStatus.ACTIVE: RecurStatus.ACTIVE,
    GatewaySubscriptionStatus.PENDING: RecurStatus.PENDING,
    GatewaySubscriptionStatus.CANCELED: RecurStatus.CANCELLED,
    GatewaySubscriptionStatus.DEACTIVATED: RecurStatus.CANCELLED,
    GatewaySubscriptionStatus.SUSPENDED: RecurStatus.FAILED,
}


def _normalize(status: str | None) -> str:
    return (status or "").strip().upper()


def parse_payment_status(status: str | None) -> GatewayPaymentStatus | None:
    try:
        return GatewayPaymentStatus(_normalize(status))
    except ValueError:
        return None


def parse_subscription_status(status: str | None) -> GatewaySubscriptionStatus | None:
    try:
        return GatewaySubscriptionStatus(_normalize(status))
    except ValueError:
        return None


def _value(status: str) -> str:
    """Accept enum members or their plain values."""
    return status.value if isinstance(status, Enum) else status


def map_payment_status(status: str | None) -> ContributionStatus:
    """Map a gateway payment status to a contribution status.

    Unrecognized values map to Pending: a payment we cannot classify is
    recorded, but never as money received.
    """
    parsed = parse_payment_status(status)
    if parsed is None:
        return ContributionStatus.PENDING
    return PAYMENT_STATUS_MAP[parsed]


def map_subscription_status(status: str | None) -> RecurStatus | None:
    """Map a gateway subscription status to a recurring status.

    Returns None for unrecognized values, meaning "leave local status alone".
    """
    parsed = parse_subscription_status(status)
    if parsed is None:
        return None
    return SUBSCRIPTION_STATUS_MAP[parsed]


class RecurStateMachine:
    """State machine for recurring contribution status transitions.

    Allowed transitions:
    - pending → active
    - pending → cancelled (cancelled before the first charge)
    - pending → failed
    - active → cancelled
    - active → failed
    - failed → active (suspension lifted)
    - failed → cancelled
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        RecurStatus.PENDING.value: [
            RecurStatus.ACTIVE.value,
            RecurStatus.CANCELLED.value,
            RecurStatus.FAILED.value,
        ],
        RecurStatus.ACTIVE.value: [RecurStatus.CANCELLED.value, RecurStatus.FAILED.value],
        RecurStatus.FAILED.value: [RecurStatus.ACTIVE.value, RecurStatus.CANCELLED.value],
        RecurStatus.CANCELLED.value: [],  # Terminal state
    }

    TERMINAL = frozenset({RecurStatus.CANCELLED.value})

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(_value(from_status), [])
        return _value(to_status) in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = "status is terminal" if cls.is_terminal(from_status) else None
            raise InvalidTransitionError(_value(from_status), _value(to_status), reason)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return _value(status) in cls.TERMINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(_value(current_status), []))
