"""SQLAlchemy ORM models."""

from square_sync.models.base import Base, TimestampMixin
from square_sync.models.crm import (
    CrmContact,
    CrmContribution,
    CrmContributionRecur,
    SettingEntry,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "CrmContact",
    "CrmContribution",
    "CrmContributionRecur",
    "SettingEntry",
]
