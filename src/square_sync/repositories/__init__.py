"""CRM-side repositories."""

from square_sync.repositories.base import (
    Contact,
    ContactRepository,
    Contribution,
    ContributionRepository,
    KeyValueStore,
    RecurringContribution,
    RecurringContributionRepository,
    Repositories,
)
from square_sync.repositories.memory import in_memory_repositories
from square_sync.repositories.sql import sql_repositories

__all__ = [
    "Contact",
    "ContactRepository",
    "Contribution",
    "ContributionRepository",
    "KeyValueStore",
    "RecurringContribution",
    "RecurringContributionRepository",
    "Repositories",
    "in_memory_repositories",
    "sql_repositories",
]
