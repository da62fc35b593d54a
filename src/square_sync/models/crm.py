"""Reference CRM tables.

A real deployment plugs its own CRM in through the repository protocols;
these tables back the bundled SQLAlchemy repositories.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from square_sync.models.base import Base, TimestampMixin


class CrmContact(Base, TimestampMixin):
    """Contact with its cached gateway identities."""

    __tablename__ = "crm_contact"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str | None] = mapped_column(Text)
    last_name: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text, index=True)
    gateway_customer_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    gateway_card_id: Mapped[str | None] = mapped_column(String(64))


class CrmContributionRecur(Base, TimestampMixin):
    """Recurring contribution; processor_id holds the gateway subscription id."""

    __tablename__ = "crm_contribution_recur"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contact_id: Mapped[int] = mapped_column(ForeignKey("crm_contact.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    contribution_status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")
    processor_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    financial_type_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    trxn_id: Mapped[str | None] = mapped_column(String(64))
    frequency_unit: Mapped[str | None] = mapped_column(String(16))
    frequency_interval: Mapped[int | None] = mapped_column(Integer)
    installments: Mapped[int | None] = mapped_column(Integer)
    cancel_date: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "contribution_status IN ('Pending', 'Active', 'Cancelled', 'Failed')",
            name="crm_contribution_recur_status_ck",
        ),
    )


class CrmContribution(Base, TimestampMixin):
    """Single contribution; trxn_id holds the gateway payment id."""

    __tablename__ = "crm_contribution"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contact_id: Mapped[int] = mapped_column(ForeignKey("crm_contact.id"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    contribution_status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")
    trxn_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    invoice_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    contribution_recur_id: Mapped[int | None] = mapped_column(ForeignKey("crm_contribution_recur.id"))
    financial_type_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    refund_trxn_id: Mapped[str | None] = mapped_column(String(64))
    source: Mapped[str | None] = mapped_column(Text)
    receive_date: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        Index("crm_contribution_recur_idx", "contribution_recur_id"),
    )


class SettingEntry(Base):
    """Versioned key/value row for caches that need compare-and-set."""

    __tablename__ = "square_setting"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
