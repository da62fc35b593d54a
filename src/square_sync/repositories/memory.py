"""In-memory repositories. Thread-safe; records are copied in and out."""

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from typing import Any

from square_sync.errors import NotFoundError
from square_sync.repositories.base import (
    CONTRIBUTION_FIELDS,
    RECUR_FIELDS,
    Contact,
    Contribution,
    RecurringContribution,
    Repositories,
    check_fields,
)


def _next_id(rows: dict[int, Any]) -> int:
    # Explicitly assigned ids count too.
    return max(rows, default=0) + 1


class InMemoryContactRepository:
    def __init__(self, contacts: list[Contact] | None = None):
        self._lock = threading.Lock()
        self._rows: dict[int, Contact] = {}
        for contact in contacts or []:
            self.add(contact)

    def add(self, contact: Contact) -> Contact:
        with self._lock:
            self._rows[contact.id] = replace(contact)
        return contact

    def get(self, contact_id: int) -> Contact | None:
        with self._lock:
            row = self._rows.get(contact_id)
            return replace(row) if row else None

    def find_by_customer_id(self, customer_id: str) -> Contact | None:
        with self._lock:
            for row in self._rows.values():
                if row.gateway_customer_id == customer_id:
                    return replace(row)
        return None

    def find_by_email(self, email: str) -> Contact | None:
        needle = (email or "").strip().lower()
        if not needle:
            return None
        with self._lock:
            for row in sorted(self._rows.values(), key=lambda c: c.id):
                if (row.email or "").strip().lower() == needle:
                    return replace(row)
        return None

    def update_gateway_ids(
        self,
        contact_id: int,
        customer_id: str | None = None,
        card_id: str | None = None,
    ) -> None:
        with self._lock:
            row = self._rows.get(contact_id)
            if row is None:
                raise NotFoundError(f"Contact {contact_id} not found.")
            if customer_id is not None:
                row.gateway_customer_id = customer_id
            if card_id is not None:
                row.gateway_card_id = card_id


class InMemoryContributionRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[int, Contribution] = {}

    def get(self, contribution_id: int) -> Contribution | None:
        with self._lock:
            row = self._rows.get(contribution_id)
            return replace(row) if row else None

    def get_by_trxn_id(self, trxn_id: str) -> Contribution | None:
        return self._find(trxn_id=trxn_id)

    def get_by_invoice_id(self, invoice_id: str) -> Contribution | None:
        return self._find(invoice_id=invoice_id)

    def _find(self, **match: Any) -> Contribution | None:
        with self._lock:
            for row in self._rows.values():
                if all(getattr(row, k) == v for k, v in match.items()):
                    return replace(row)
        return None

    def create(self, contribution: Contribution) -> Contribution:
        with self._lock:
            stored = replace(contribution, id=contribution.id or _next_id(self._rows))
            self._rows[stored.id] = stored
            return replace(stored)

    def update(self, contribution_id: int, **changes: Any) -> Contribution:
        check_fields(changes, CONTRIBUTION_FIELDS)
        with self._lock:
            row = self._rows.get(contribution_id)
            if row is None:
                raise NotFoundError(f"Contribution {contribution_id} not found.")
            for k, v in changes.items():
                setattr(row, k, v)
            return replace(row)

    def all(self) -> list[Contribution]:
        with self._lock:
            return [replace(r) for r in self._rows.values()]


class InMemoryRecurringContributionRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[int, RecurringContribution] = {}

    def get(self, recur_id: int) -> RecurringContribution | None:
        with self._lock:
            row = self._rows.get(recur_id)
            return replace(row) if row else None

    def get_by_processor_id(self, processor_id: str) -> RecurringContribution | None:
        with self._lock:
            for row in self._rows.values():
                if row.processor_id == processor_id:
                    return replace(row)
        return None

    def create(self, recur: RecurringContribution) -> RecurringContribution:
        with self._lock:
            stored = replace(recur, id=recur.id or _next_id(self._rows))
            self._rows[stored.id] = stored
            return replace(stored)

    def update(self, recur_id: int, **changes: Any) -> RecurringContribution:
        check_fields(changes, RECUR_FIELDS)
        with self._lock:
            row = self._rows.get(recur_id)
            if row is None:
                raise NotFoundError(f"Recurring contribution {recur_id} not found.")
            for k, v in changes.items():
                setattr(row, k, v)
            return replace(row)


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def compare_and_set(
        self,
        key: str,
        expected: dict[str, Any] | None,
        value: dict[str, Any],
    ) -> bool:
        with self._lock:
            if self._data.get(key) != expected:
                return False
            self._data[key] = copy.deepcopy(value)
            return True


def in_memory_repositories(contacts: list[Contact] | None = None) -> Repositories:
    return Repositories(
        contacts=InMemoryContactRepository(contacts),
        contributions=InMemoryContributionRepository(),
        recurring=InMemoryRecurringContributionRepository(),
        settings=InMemoryKeyValueStore(),
    )
