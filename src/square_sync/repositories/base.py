"""Repository contracts for the CRM side.

The sync services only see these protocols. Two implementations ship with
the package: in-memory (tests, embedding) and SQLAlchemy.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol


@dataclass
class Contact:
    id: int
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    gateway_customer_id: str | None = None
    gateway_card_id: str | None = None


@dataclass
class Contribution:
    contact_id: int
    total_amount: Decimal
    currency: str = "USD"
    contribution_status: str = "Pending"
    trxn_id: str | None = None
    invoice_id: str | None = None
    contribution_recur_id: int | None = None
    financial_type_id: int = 1
    refund_trxn_id: str | None = None
    source: str | None = None
    receive_date: datetime | None = None
    id: int | None = None


@dataclass
class RecurringContribution:
    contact_id: int
    amount: Decimal
    currency: str = "USD"
    contribution_status: str = "Pending"
    processor_id: str | None = None
    financial_type_id: int = 1
    trxn_id: str | None = None
    frequency_unit: str | None = None
    frequency_interval: int | None = None
    installments: int | None = None
    cancel_date: datetime | None = None
    id: int | None = None


CONTRIBUTION_FIELDS = frozenset(Contribution.__dataclass_fields__) - {"id"}
RECUR_FIELDS = frozenset(RecurringContribution.__dataclass_fields__) - {"id"}


class ContactRepository(Protocol):
    def get(self, contact_id: int) -> Contact | None: ...

    def find_by_customer_id(self, customer_id: str) -> Contact | None: ...

    def find_by_email(self, email: str) -> Contact | None: ...

    def update_gateway_ids(
        self,
        contact_id: int,
        customer_id: str | None = None,
        card_id: str | None = None,
    ) -> None:
        """Persist whichever of the ids is given; None leaves a field as is."""
        ...


class ContributionRepository(Protocol):
    def get(self, contribution_id: int) -> Contribution | None: ...

    def get_by_trxn_id(self, trxn_id: str) -> Contribution | None: ...

    def get_by_invoice_id(self, invoice_id: str) -> Contribution | None: ...

    def create(self, contribution: Contribution) -> Contribution:
        """Insert and return the record with its id assigned."""
        ...

    def update(self, contribution_id: int, **changes: Any) -> Contribution: ...


class RecurringContributionRepository(Protocol):
    def get(self, recur_id: int) -> RecurringContribution | None: ...

    def get_by_processor_id(self, processor_id: str) -> RecurringContribution | None: ...

    def create(self, recur: RecurringContribution) -> RecurringContribution: ...

    def update(self, recur_id: int, **changes: Any) -> RecurringContribution: ...


class KeyValueStore(Protocol):
    """Settings-style store for the plan caches.

    Values are JSON objects. `compare_and_set` replaces the value only when
    the current value equals `expected` (None = key absent) and reports
    whether it did.
    """

    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any]) -> None: ...

    def compare_and_set(
        self,
        key: str,
        expected: dict[str, Any] | None,
        value: dict[str, Any],
    ) -> bool: ...


@dataclass
class Repositories:
    """Bundle handed to the services."""

    contacts: ContactRepository
    contributions: ContributionRepository
    recurring: RecurringContributionRepository
    settings: KeyValueStore


def check_fields(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {sorted(unknown)}")
