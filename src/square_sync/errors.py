"""Typed error taxonomy for gateway synchronization.

Every operation fails fast with one of these. The HTTP layer maps them to
status codes; the webhook path turns them into a status and a log line.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class SquareSyncError(Exception):
    """Base class for all errors raised by square_sync."""

    code = "SQUARE_SYNC_ERROR"


class ConfigurationError(SquareSyncError):
    """Missing credentials, location id or webhook secret."""

    code = "CONFIGURATION_ERROR"


class TransportError(SquareSyncError):
    """Connection-level failure talking to the gateway."""

    code = "TRANSPORT_ERROR"


class DecodeError(SquareSyncError):
    """Gateway response body is empty or not valid JSON."""

    code = "DECODE_ERROR"

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


@dataclass(frozen=True)
class GatewayErrorDetail:
    """One entry of the gateway's structured error list."""

    code: str
    detail: str = ""
    category: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayErrorDetail:
        return cls(
            code=str(data.get("code") or "UNKNOWN"),
            detail=str(data.get("detail") or ""),
            category=str(data.get("category") or ""),
        )


class ProtocolError(SquareSyncError):
    """Gateway answered with an HTTP status outside 200-299."""

    code = "PROTOCOL_ERROR"

    def __init__(
        self,
        status_code: int,
        errors: list[GatewayErrorDetail] | None = None,
        message: str | None = None,
    ):
        self.status_code = status_code
        self.errors = errors or []
        if message is None:
            message = f"Gateway returned HTTP {status_code}."
            if self.errors:
                message += " " + " | ".join(f"{e.code}: {e.detail}" for e in self.errors)
        super().__init__(message)

    @property
    def error_codes(self) -> list[str]:
        return [e.code for e in self.errors]


class CardDeclinedError(ProtocolError):
    """Card could not be stored; message is safe to show to the payer."""

    code = "CARD_DECLINED"


class RefundRejectedError(ProtocolError):
    """Gateway accepted the refund call but reported a non-success status."""

    code = "REFUND_REJECTED"


class ConflictError(SquareSyncError):
    """A gateway customer is already mapped to a different contact."""

    code = "CONFLICT"

    def __init__(self, contact_id: int, customer_id: str, mapped_contact_id: int, message: str | None = None):
        self.contact_id = contact_id
        self.customer_id = customer_id
        self.mapped_contact_id = mapped_contact_id
        super().__init__(
            message
            or f"Gateway customer {customer_id} is already mapped to a different contact ({mapped_contact_id})."
        )


class UnsupportedCadenceError(SquareSyncError):
    """(unit, step) is not one of the supported billing cadences."""

    code = "UNSUPPORTED_CADENCE"

    def __init__(self, unit: str, step: int | str | None, message: str | None = None):
        self.unit = unit
        self.step = step
        super().__init__(message or f"Unsupported cadence: every {step} {unit}(s)")


class NotFoundError(SquareSyncError):
    """No matching local or gateway record."""

    code = "NOT_FOUND"


class ValidationError(SquareSyncError):
    """Required caller input is missing or invalid."""

    code = "VALIDATION_ERROR"


class InvalidTransitionError(SquareSyncError):
    """Raised when an invalid recurring status transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
