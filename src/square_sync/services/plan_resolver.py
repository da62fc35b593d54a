"""Billing cadence resolution and catalog plan / plan-variation caching.

A plan names what a subscription is for ("CiviCRM Contribute"); a plan
variation is one (cadence, amount) price point under it. Both are created
lazily in the gateway catalog and cached in the settings store forever.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from square_sync.errors import DecodeError, NotFoundError, UnsupportedCadenceError, ValidationError
from square_sync.gateway.client import GatewayClient
from square_sync.locking import KeyedLock
from square_sync.money import quantize, to_minor_units
from square_sync.repositories.base import KeyValueStore

logger = logging.getLogger(__name__)

PLAN_CACHE_KEY = "square_plan_cache"
PLAN_VARIATION_CACHE_KEY = "square_plan_variation_cache"
PLAN_MAP_KEY = "square_plan_map"

MAX_CAS_ATTEMPTS = 20


class Cadence(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    EVERY_TWO_WEEKS = "EVERY_TWO_WEEKS"
    MONTHLY = "MONTHLY"
    EVERY_TWO_MONTHS = "EVERY_TWO_MONTHS"
    QUARTERLY = "QUARTERLY"
    EVERY_SIX_MONTHS = "EVERY_SIX_MONTHS"
    ANNUAL = "ANNUAL"


CADENCES: dict[tuple[str, int], Cadence] = {
    ("day", 1): Cadence.DAILY,
    ("week", 1): Cadence.WEEKLY,
    ("week", 2): Cadence.EVERY_TWO_WEEKS,
    ("month", 1): Cadence.MONTHLY,
    ("month", 2): Cadence.EVERY_TWO_MONTHS,
    ("month", 3): Cadence.QUARTERLY,
    ("month", 6): Cadence.EVERY_SIX_MONTHS,
    ("year", 1): Cadence.ANNUAL,
}


def resolve_cadence(unit: str, step: int | str) -> Cadence:
    """Map a CRM frequency (unit, interval) to a gateway cadence."""
    try:
        step_int = int(step)
    except (TypeError, ValueError):
        raise UnsupportedCadenceError(str(unit), step) from None
    cadence = CADENCES.get(((unit or "").strip().lower(), step_int))
    if cadence is None:
        raise UnsupportedCadenceError(str(unit), step_int)
    return cadence


def coerce_cadence(value: Cadence | str) -> Cadence:
    """Accept a Cadence or its gateway name, e.g. "MONTHLY"."""
    if isinstance(value, Cadence):
        return value
    try:
        return Cadence(str(value).strip().upper())
    except ValueError:
        raise UnsupportedCadenceError(str(value), None, f"Unsupported cadence: {value!r}") from None


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def variation_cache_key(plan_name: str, cadence: Cadence, amount: Decimal) -> str:
    return f"{plan_name}_{cadence.value}_{quantize(amount)}"


class PlanResolver:
    """Gets or creates catalog plans and plan variations."""

    def __init__(
        self,
        client: GatewayClient,
        store: KeyValueStore,
        plan_prefix: str | Callable[[], str] = "CiviCRM",
        locks: KeyedLock | None = None,
        idempotency_key: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.client = client
        self.store = store
        self._plan_prefix = plan_prefix
        self.locks = locks or KeyedLock()
        self._idempotency_key = idempotency_key

    @property
    def plan_prefix(self) -> str:
        prefix = self._plan_prefix
        return prefix() if callable(prefix) else prefix

    # =========================================================================
    # Cache helpers
    # =========================================================================

    def _cached(self, cache_name: str, key: str) -> str | None:
        cache = self.store.get(cache_name) or {}
        return cache.get(key)

    def _remember(self, cache_name: str, key: str, value: str) -> str:
        """Merge one entry into a cache dict with compare-and-set.

        Returns the winning value: an entry that is already present is never
        overwritten.
        """
        for _ in range(MAX_CAS_ATTEMPTS):
            current = self.store.get(cache_name)
            merged = dict(current or {})
            if merged.get(key):
                return merged[key]
            merged[key] = value
            if self.store.compare_and_set(cache_name, current, merged):
                return value
        raise RuntimeError(f"Could not update {cache_name} after {MAX_CAS_ATTEMPTS} attempts")

    def _create_catalog_object(self, obj: dict[str, Any]) -> str:
        resp = self.client.create_catalog_object(
            {"idempotency_key": self._idempotency_key(), "object": obj}
        )
        object_id = (resp.get("catalog_object") or {}).get("id")
        if not object_id:
            raise DecodeError(f"Gateway did not return a catalog id for {obj['type']}.", raw=str(resp))
        return object_id

    # =========================================================================
    # Plans
    # =========================================================================

    def get_or_create_plan(self, plan_name: str) -> str:
        """Return the catalog plan id for a plan name, creating it once."""
        if not plan_name:
            raise ValidationError("Plan name is required.")
        cached = self._cached(PLAN_CACHE_KEY, plan_name)
        if cached:
            return cached

        with self.locks.hold(("plan", plan_name)):
            cached = self._cached(PLAN_CACHE_KEY, plan_name)
            if cached:
                return cached
            logger.info("Creating subscription plan %r", plan_name)
            plan_id = self._create_catalog_object(
                {
                    "type": "SUBSCRIPTION_PLAN",
                    "id": f"#plan_{_md5(plan_name)}",
                    "subscription_plan_data": {"name": plan_name},
                }
            )
            return self._remember(PLAN_CACHE_KEY, plan_name, plan_id)

    def get_or_create_plan_variation(
        self,
        plan_name: str,
        amount: Decimal | str | float,
        currency: str,
        cadence: Cadence | str,
        installments: int | None = None,
    ) -> str:
        """Return the variation id for (plan, cadence, amount), creating it once."""
        cadence = coerce_cadence(cadence)
        amount = quantize(amount)
        key = variation_cache_key(plan_name, cadence, amount)
        cached = self._cached(PLAN_VARIATION_CACHE_KEY, key)
        if cached:
            return cached

        with self.locks.hold(("variation", key)):
            cached = self._cached(PLAN_VARIATION_CACHE_KEY, key)
            if cached:
                return cached

            plan_id = self.get_or_create_plan(plan_name)
            logger.info("Creating plan variation %s under plan %s", key, plan_id)
            variation_id = self._create_catalog_object(
                {
                    "type": "SUBSCRIPTION_PLAN_VARIATION",
                    "id": f"#var_{_md5(key)}",
                    "subscription_plan_variation_data": {
                        "name": f"{cadence.value} {amount:.2f} {currency}",
                        "subscription_plan_id": plan_id,
                        "phases": [
                            {
                                "ordinal": 0,
                                "cadence": cadence.value,
                                "periods": installments or 0,
                                "pricing": {
                                    "type": "STATIC",
                                    "price": {
                                        "amount": to_minor_units(amount),
                                        "currency": currency,
                                    },
                                },
                            }
                        ],
                    },
                }
            )
            return self._remember(PLAN_VARIATION_CACHE_KEY, key, variation_id)

    def plan_variation_for(
        self,
        component: str | None,
        amount: Decimal | str | float | None,
        currency: str | None,
        unit: str | None,
        step: int | None = 1,
        installments: int | None = None,
    ) -> str:
        """Resolve the variation for a recurring request.

        The plan is "<prefix> <Component>", e.g. "CiviCRM Contribute".
        """
        if not amount or quantize(amount) <= 0 or not unit:
            raise ValidationError("Amount and cadence are required for a subscription.")
        cadence = resolve_cadence(unit, step or 1)
        plan_name = f"{self.plan_prefix} {(component or 'contribute').capitalize()}"
        return self.get_or_create_plan_variation(
            plan_name, amount, currency or "USD", cadence, installments
        )

    # =========================================================================
    # Membership plan map
    # =========================================================================

    def plan_for_membership(self, membership_type_id: int | str | None) -> str:
        plan_map = self.store.get(PLAN_MAP_KEY) or {}
        plan_id = plan_map.get(str(membership_type_id)) if membership_type_id else None
        if not plan_id:
            raise NotFoundError(f"No plan mapping found for membership type ID {membership_type_id}.")
        return plan_id

    def map_membership_plan(self, membership_type_id: int | str, plan_id: str) -> None:
        for _ in range(MAX_CAS_ATTEMPTS):
            current = self.store.get(PLAN_MAP_KEY)
            merged = dict(current or {})
            merged[str(membership_type_id)] = plan_id
            if self.store.compare_and_set(PLAN_MAP_KEY, current, merged):
                return
        raise RuntimeError(f"Could not update {PLAN_MAP_KEY} after {MAX_CAS_ATTEMPTS} attempts")
