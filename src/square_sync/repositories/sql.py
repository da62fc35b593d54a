"""SQLAlchemy-backed repositories.

Each call runs in its own short transaction from the session factory.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from square_sync.database import session_scope
from square_sync.errors import NotFoundError
from square_sync.models import CrmContact, CrmContribution, CrmContributionRecur, SettingEntry
from square_sync.repositories.base import (
    CONTRIBUTION_FIELDS,
    RECUR_FIELDS,
    Contact,
    Contribution,
    RecurringContribution,
    Repositories,
    check_fields,
)


def _contact(row: CrmContact) -> Contact:
    return Contact(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        gateway_customer_id=row.gateway_customer_id,
        gateway_card_id=row.gateway_card_id,
    )


def _contribution(row: CrmContribution) -> Contribution:
    return Contribution(id=row.id, **{f: getattr(row, f) for f in CONTRIBUTION_FIELDS})


def _recur(row: CrmContributionRecur) -> RecurringContribution:
    return RecurringContribution(id=row.id, **{f: getattr(row, f) for f in RECUR_FIELDS})


class SqlContactRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def add(self, contact: Contact) -> Contact:
        with session_scope(self.session_factory) as session:
            session.add(
                CrmContact(
                    id=contact.id,
                    first_name=contact.first_name,
                    last_name=contact.last_name,
                    email=contact.email,
                    gateway_customer_id=contact.gateway_customer_id,
                    gateway_card_id=contact.gateway_card_id,
                )
            )
        return contact

    def get(self, contact_id: int) -> Contact | None:
        with self.session_factory() as session:
            row = session.get(CrmContact, contact_id)
            return _contact(row) if row else None

    def find_by_customer_id(self, customer_id: str) -> Contact | None:
        with self.session_factory() as session:
            row = session.scalar(
                select(CrmContact).where(CrmContact.gateway_customer_id == customer_id)
            )
            return _contact(row) if row else None

    def find_by_email(self, email: str) -> Contact | None:
        needle = (email or "").strip().lower()
        if not needle:
            return None
        with self.session_factory() as session:
            row = session.scalar(
                select(CrmContact)
                .where(func.lower(CrmContact.email) == needle)
                .order_by(CrmContact.id)
                .limit(1)
            )
            return _contact(row) if row else None

    def update_gateway_ids(
        self,
        contact_id: int,
        customer_id: str | None = None,
        card_id: str | None = None,
    ) -> None:
        with session_scope(self.session_factory) as session:
            row = session.get(CrmContact, contact_id)
            if row is None:
                raise NotFoundError(f"Contact {contact_id} not found.")
            if customer_id is not None:
                row.gateway_customer_id = customer_id
            if card_id is not None:
                row.gateway_card_id = card_id


class SqlContributionRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def get(self, contribution_id: int) -> Contribution | None:
        with self.session_factory() as session:
            row = session.get(CrmContribution, contribution_id)
            return _contribution(row) if row else None

    def get_by_trxn_id(self, trxn_id: str) -> Contribution | None:
        with self.session_factory() as session:
            row = session.scalar(select(CrmContribution).where(CrmContribution.trxn_id == trxn_id))
            return _contribution(row) if row else None

    def get_by_invoice_id(self, invoice_id: str) -> Contribution | None:
        with self.session_factory() as session:
            row = session.scalar(
                select(CrmContribution).where(CrmContribution.invoice_id == invoice_id)
            )
            return _contribution(row) if row else None

    def create(self, contribution: Contribution) -> Contribution:
        with session_scope(self.session_factory) as session:
            row = CrmContribution(**{f: getattr(contribution, f) for f in CONTRIBUTION_FIELDS})
            if contribution.id is not None:
                row.id = contribution.id
            session.add(row)
            session.flush()
            return _contribution(row)

    def update(self, contribution_id: int, **changes: Any) -> Contribution:
        check_fields(changes, CONTRIBUTION_FIELDS)
        with session_scope(self.session_factory) as session:
            row = session.get(CrmContribution, contribution_id)
            if row is None:
                raise NotFoundError(f"Contribution {contribution_id} not found.")
            for k, v in changes.items():
                setattr(row, k, v)
            session.flush()
            return _contribution(row)


class SqlRecurringContributionRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def get(self, recur_id: int) -> RecurringContribution | None:
        with self.session_factory() as session:
            row = session.get(CrmContributionRecur, recur_id)
            return _recur(row) if row else None

    def get_by_processor_id(self, processor_id: str) -> RecurringContribution | None:
        with self.session_factory() as session:
            row = session.scalar(
                select(CrmContributionRecur).where(CrmContributionRecur.processor_id == processor_id)
            )
            return _recur(row) if row else None

    def create(self, recur: RecurringContribution) -> RecurringContribution:
        with session_scope(self.session_factory) as session:
            row = CrmContributionRecur(**{f: getattr(recur, f) for f in RECUR_FIELDS})
            if recur.id is not None:
                row.id = recur.id
            session.add(row)
            session.flush()
            return _recur(row)

    def update(self, recur_id: int, **changes: Any) -> RecurringContribution:
        check_fields(changes, RECUR_FIELDS)
        with session_scope(self.session_factory) as session:
            row = session.get(CrmContributionRecur, recur_id)
            if row is None:
                raise NotFoundError(f"Recurring contribution {recur_id} not found.")
            for k, v in changes.items():
                setattr(row, k, v)
            session.flush()
            return _recur(row)


class SqlKeyValueStore:
    """Versioned rows; compare-and-set is an UPDATE guarded by the version."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def get(self, key: str) -> dict[str, Any] | None:
        with self.session_factory() as session:
            row = session.get(SettingEntry, key)
            return dict(row.value) if row else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        with session_scope(self.session_factory) as session:
            row = session.get(SettingEntry, key)
            if row is None:
                session.add(SettingEntry(key=key, value=value, version=1))
            else:
                row.value = value
                row.version += 1

    def compare_and_set(
        self,
        key: str,
        expected: dict[str, Any] | None,
        value: dict[str, Any],
    ) -> bool:
        try:
            with session_scope(self.session_factory) as session:
                row = session.get(SettingEntry, key)
                if row is None:
                    if expected is not None:
                        return False
                    session.add(SettingEntry(key=key, value=value, version=1))
                    return True
                if row.value != expected:
                    return False
                result = session.execute(
                    update(SettingEntry)
                    .where(SettingEntry.key == key, SettingEntry.version == row.version)
                    .values(value=value, version=row.version + 1)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1
        except IntegrityError:
            # Another writer inserted the key first.
            return False


def sql_repositories(session_factory: sessionmaker[Session]) -> Repositories:
    return Repositories(
        contacts=SqlContactRepository(session_factory),
        contributions=SqlContributionRepository(session_factory),
        recurring=SqlRecurringContributionRepository(session_factory),
        settings=SqlKeyValueStore(session_factory),
    )
