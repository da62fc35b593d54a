"""Value types for gateway objects.

Only the fields the sync engine reads are modeled; the raw payload is kept
for logging.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from square_sync.errors import DecodeError
from square_sync.money import from_minor_units


def _text(value: Any) -> str | None:
    return None if value is None else str(value)


def _int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DecodeError(f"Gateway field {name} is not an integer: {value!r}", raw=repr(value)) from None


@dataclass(frozen=True)
class Money:
    """Amount in minor units plus ISO currency."""

    amount: int
    currency: str = "USD"

    @property
    def decimal(self) -> Decimal:
        return from_minor_units(self.amount)

    @classmethod
    def from_dict(cls, data: Any) -> Money | None:
        if not isinstance(data, dict) or data.get("amount") is None:
            return None
        return cls(amount=_int(data["amount"], "amount"), currency=str(data.get("currency") or "USD"))

    def to_dict(self) -> dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency}


@dataclass(frozen=True)
class GatewayCustomer:
    id: str
    reference_id: str | None = None
    email_address: str | None = None
    given_name: str | None = None
    family_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayCustomer:
        return cls(
            id=data["id"],
            reference_id=data.get("reference_id"),
            email_address=data.get("email_address"),
            given_name=data.get("given_name"),
            family_name=data.get("family_name"),
        )


@dataclass(frozen=True)
class GatewayCard:
    id: str
    customer_id: str | None = None
    card_brand: str | None = None
    last_4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayCard:
        return cls(
            id=data["id"],
            customer_id=data.get("customer_id"),
            card_brand=data.get("card_brand"),
            last_4=data.get("last_4"),
            exp_month=data.get("exp_month"),
            exp_year=data.get("exp_year"),
        )


@dataclass(frozen=True)
class GatewayPayment:
    id: str | None
    status: str = "UNKNOWN"
    amount_money: Money | None = None
    reference_id: str | None = None
    customer_id: str | None = None
    buyer_email_address: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayPayment:
        return cls(
            id=data.get("id"),
            status=str(data.get("status") or "UNKNOWN"),
            amount_money=Money.from_dict(data.get("amount_money")),
            reference_id=_text(data.get("reference_id")),
            customer_id=data.get("customer_id"),
            buyer_email_address=data.get("buyer_email_address"),
            raw=data,
        )


@dataclass(frozen=True)
class GatewayRefund:
    id: str | None
    payment_id: str | None
    status: str = "UNKNOWN"
    amount_money: Money | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayRefund:
        return cls(
            id=data.get("id"),
            payment_id=_text(data.get("payment_id")),
            status=str(data.get("status") or "UNKNOWN"),
            amount_money=Money.from_dict(data.get("amount_money")),
        )


@dataclass(frozen=True)
class GatewaySubscription:
    id: str | None
    status: str = "UNKNOWN"
    plan_variation_id: str | None = None
    customer_id: str | None = None
    card_id: str | None = None
    price_override_money: Money | None = None
    version: int = 0

    @property
    def override_amount(self) -> Decimal | None:
        # A zero override is treated the same as no override.
        if self.price_override_money is None or not self.price_override_money.amount:
            return None
        return self.price_override_money.decimal

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewaySubscription:
        return cls(
            id=data.get("id"),
            status=str(data.get("status") or "UNKNOWN"),
            plan_variation_id=data.get("plan_variation_id"),
            customer_id=data.get("customer_id"),
            card_id=data.get("card_id"),
            price_override_money=Money.from_dict(data.get("price_override_money")),
            version=_int(data.get("version") or 0, "version"),
        )


@dataclass(frozen=True)
class GatewayInvoice:
    id: str | None
    subscription_id: str | None = None
    computed_amount_money: Money | None = None
    status: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayInvoice:
        requests = data.get("payment_requests")
        first = requests[0] if isinstance(requests, list) and requests else None
        computed = first.get("computed_amount_money") if isinstance(first, dict) else None
        return cls(
            id=data.get("id"),
            subscription_id=data.get("subscription_id"),
            computed_amount_money=Money.from_dict(computed),
            status=data.get("status"),
        )
