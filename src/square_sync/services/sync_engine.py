"""Reconciles gateway payments, refunds, subscriptions and invoices into CRM records.

Every operation returns a SyncResult instead of raising for the expected
"nothing to do" cases: events that cannot be matched to a local record are
dropped with a log line. There is no retry queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from square_sync.errors import NotFoundError, ValidationError
from square_sync.gateway.client import GatewayClient
from square_sync.gateway.types import GatewayInvoice, GatewayPayment, GatewayRefund, GatewaySubscription
from square_sync.locking import KeyedLock
from square_sync.repositories.base import Contribution, Repositories
from square_sync.services.state_machine import (
    ContributionStatus,
    RecurStateMachine,
    RecurStatus,
    map_payment_status,
    map_subscription_status,
)

logger = logging.getLogger(__name__)

DEFAULT_FINANCIAL_TYPE_ID = 1
PAYMENT_SOURCE = "Square Payment (Webhook)"
INVOICE_SOURCE = "Square Invoice (Webhook)"
REJECTED_REFUND_STATUSES = frozenset({"REJECTED", "FAILED"})


class SyncOutcome(str, Enum):
    """Result of a sync operation."""

    CREATED = "created"  # New local record
    UPDATED = "updated"  # Existing record changed
    UNCHANGED = "unchanged"  # Matched, nothing to change
    DUPLICATE = "duplicate"  # Already recorded (idempotent skip)
    DROPPED = "dropped"  # No local match; logged only


@dataclass(frozen=True)
class SyncResult:
    outcome: SyncOutcome
    record_id: int | None = None
    reason: str | None = None

    @property
    def changed(self) -> bool:
        return self.outcome in (SyncOutcome.CREATED, SyncOutcome.UPDATED)


def _dropped(reason: str, *args: Any) -> SyncResult:
    message = reason % args if args else reason
    logger.info("Sync dropped: %s", message)
    return SyncResult(SyncOutcome.DROPPED, reason=message)


class SyncEngine:
    """Applies gateway state to the CRM repositories."""

    def __init__(
        self,
        client: GatewayClient,
        repositories: Repositories,
        locks: KeyedLock | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.repos = repositories
        self.locks = locks or KeyedLock()
        self._now = now

    # =========================================================================
    # Payments and refunds
    # =========================================================================

    def sync_payment(self, payment: GatewayPayment | dict[str, Any]) -> SyncResult:
        """Create or update the contribution for a gateway payment.

        Matching: existing contribution by trxn_id, else the contact of the
        contribution named by a numeric reference_id, else the contact mapped
        to the payment's customer id, else the contact with the buyer's email.
        """
        if isinstance(payment, dict):
            payment = GatewayPayment.from_dict(payment)
        if not payment.id:
            return _dropped("payment without id")

        status = map_payment_status(payment.status)
        money = payment.amount_money
        amount = money.decimal if money else None
        currency = money.currency if money else "USD"

        with self.locks.hold(("trxn", payment.id)):
            existing = self.repos.contributions.get_by_trxn_id(payment.id)
            if existing is not None:
                return self._update_payment(existing, status, amount, currency)

            contact_id = self._resolve_payment_contact(payment)
            if contact_id is None:
                return _dropped("cannot resolve contact for payment %s", payment.id)
            if amount is None:
                return _dropped("payment %s has no amount", payment.id)

            created = self.repos.contributions.create(
                Contribution(
                    contact_id=contact_id,
                    total_amount=amount,
                    currency=currency,
                    contribution_status=status.value,
                    trxn_id=payment.id,
                    financial_type_id=DEFAULT_FINANCIAL_TYPE_ID,
                    source=PAYMENT_SOURCE,
                    receive_date=self._now(),
                )
            )
        logger.info("Created contribution %s for payment %s (contact %s)", created.id, payment.id, contact_id)
        return SyncResult(SyncOutcome.CREATED, created.id)

    def _update_payment(
        self,
        existing: Contribution,
        status: ContributionStatus,
        amount: Decimal | None,
        currency: str,
    ) -> SyncResult:
        changes: dict[str, Any] = {"currency": currency}
        if amount is not None:
            changes["total_amount"] = amount
        # A refund is final; later payment updates still report COMPLETED.
        if existing.contribution_status != ContributionStatus.REFUNDED.value:
            changes["contribution_status"] = status.value

        changes = {k: v for k, v in changes.items() if getattr(existing, k) != v}
        if not changes:
            return SyncResult(SyncOutcome.UNCHANGED, existing.id)
        self.repos.contributions.update(existing.id, **changes)
        logger.info("Updated contribution %s from payment %s: %s", existing.id, existing.trxn_id, sorted(changes))
        return SyncResult(SyncOutcome.UPDATED, existing.id)

    def _resolve_payment_contact(self, payment: GatewayPayment) -> int | None:
        ref = (payment.reference_id or "").strip()
        if ref.isdigit():
            referenced = self.repos.contributions.get(int(ref))
            if referenced is not None:
                return referenced.contact_id

        if payment.customer_id:
            contact = self.repos.contacts.find_by_customer_id(payment.customer_id)
            if contact is not None:
                return contact.id

        if payment.buyer_email_address:
            contact = self.repos.contacts.find_by_email(payment.buyer_email_address)
            if contact is not None:
                return contact.id
        return None

    def sync_refund(self, refund: GatewayRefund | dict[str, Any]) -> SyncResult:
        """Mark the refunded payment's contribution as Refunded."""
        if isinstance(refund, dict):
            refund = GatewayRefund.from_dict(refund)
        if not refund.id or not refund.payment_id:
            return _dropped("refund without id or payment id")
        if refund.status.upper() in REJECTED_REFUND_STATUSES:
            return _dropped("refund %s has status %s", refund.id, refund.status)

        contribution = self.repos.contributions.get_by_trxn_id(refund.payment_id)
        if contribution is None:
            return _dropped("no contribution for payment %s", refund.payment_id)

        if (
            contribution.contribution_status == ContributionStatus.REFUNDED.value
            and contribution.refund_trxn_id == refund.id
        ):
            return SyncResult(SyncOutcome.UNCHANGED, contribution.id)

        self.repos.contributions.update(
            contribution.id,
            contribution_status=ContributionStatus.REFUNDED.value,
            refund_trxn_id=refund.id,
        )
        logger.info("Marked contribution %s refunded (refund %s)", contribution.id, refund.id)
        return SyncResult(SyncOutcome.UPDATED, contribution.id)

    # =========================================================================
    # Subscriptions and invoices
    # =========================================================================

    def _subscription(self, subscription: str | GatewaySubscription | dict[str, Any]) -> GatewaySubscription:
        if isinstance(subscription, GatewaySubscription):
            return subscription
        if isinstance(subscription, dict):
            return GatewaySubscription.from_dict(subscription)
        if not subscription:
            raise ValidationError("Missing subscription ID for sync.")
        data = self.client.get_subscription(subscription)
        if not data:
            raise NotFoundError(f"Gateway subscription {subscription} not found.")
        return GatewaySubscription.from_dict(data)

    def sync_subscription_status(
        self,
        subscription: str | GatewaySubscription | dict[str, Any],
    ) -> SyncResult:
        """Reconcile a recurring record with its gateway subscription.

        Given an id, the subscription is fetched from the gateway. The amount
        follows a non-zero price override; status changes only along allowed
        transitions and unknown statuses leave it alone. Last write wins.
        """
        sub = self._subscription(subscription)
        if not sub.id:
            return _dropped("subscription without id")

        recur = self.repos.recurring.get_by_processor_id(sub.id)
        if recur is None:
            return _dropped("no recurring contribution for subscription %s", sub.id)

        changes: dict[str, Any] = {}
        override = sub.override_amount
        if override is not None and override != recur.amount:
            changes["amount"] = override

        mapped = map_subscription_status(sub.status)
        if mapped is not None and mapped.value != recur.contribution_status:
            if RecurStateMachine.can_transition(recur.contribution_status, mapped):
                changes["contribution_status"] = mapped.value
                if mapped is RecurStatus.CANCELLED:
                    changes["cancel_date"] = self._now()
            else:
                logger.warning(
                    "Ignoring subscription %s status %s: recurring %s is %s",
                    sub.id,
                    sub.status,
                    recur.id,
                    recur.contribution_status,
                )

        if not changes:
            return SyncResult(SyncOutcome.UNCHANGED, recur.id)
        self.repos.recurring.update(recur.id, **changes)
        logger.info("Updated recurring contribution %s from subscription %s: %s", recur.id, sub.id, sorted(changes))
        return SyncResult(SyncOutcome.UPDATED, recur.id)

    def cancel_subscription_locally(
        self,
        subscription: str | GatewaySubscription | dict[str, Any],
    ) -> SyncResult:
        """Mark the subscription's recurring record Cancelled. No gateway call."""
        if isinstance(subscription, str):
            subscription_id: str | None = subscription
        else:
            subscription_id = self._subscription(subscription).id
        if not subscription_id:
            return _dropped("cancellation without subscription id")

        recur = self.repos.recurring.get_by_processor_id(subscription_id)
        if recur is None:
            return _dropped("no recurring contribution for cancelled subscription %s", subscription_id)
        if RecurStateMachine.is_terminal(recur.contribution_status):
            return SyncResult(SyncOutcome.UNCHANGED, recur.id)

        RecurStateMachine.validate_transition(recur.contribution_status, RecurStatus.CANCELLED)
        self.repos.recurring.update(
            recur.id,
            contribution_status=RecurStatus.CANCELLED.value,
            cancel_date=self._now(),
        )
        logger.info("Marked recurring contribution %s cancelled (subscription %s)", recur.id, subscription_id)
        return SyncResult(SyncOutcome.UPDATED, recur.id)

    def sync_invoice_payment(self, invoice: GatewayInvoice | dict[str, Any]) -> SyncResult:
        """Record a paid subscription invoice as a completed contribution, once."""
        if isinstance(invoice, dict):
            invoice = GatewayInvoice.from_dict(invoice)
        if not invoice.id:
            return _dropped("invoice without id")
        if not invoice.subscription_id:
            return _dropped("invoice %s has no subscription id", invoice.id)

        recur = self.repos.recurring.get_by_processor_id(invoice.subscription_id)
        if recur is None:
            return _dropped("no recurring contribution for subscription %s", invoice.subscription_id)

        with self.locks.hold(("invoice", invoice.id)):
            existing = self.repos.contributions.get_by_invoice_id(invoice.id)
            if existing is not None:
                logger.debug("Invoice %s already recorded as contribution %s", invoice.id, existing.id)
                return SyncResult(SyncOutcome.DUPLICATE, existing.id)

            money = invoice.computed_amount_money
            if money is None:
                return _dropped("invoice %s has no payment amount", invoice.id)

            created = self.repos.contributions.create(
                Contribution(
                    contact_id=recur.contact_id,
                    total_amount=money.decimal,
                    currency=money.currency or recur.currency,
                    contribution_status=ContributionStatus.COMPLETED.value,
                    invoice_id=invoice.id,
                    contribution_recur_id=recur.id,
                    financial_type_id=recur.financial_type_id or DEFAULT_FINANCIAL_TYPE_ID,
                    source=INVOICE_SOURCE,
                    receive_date=self._now(),
                )
            )
        logger.info("Created contribution %s for invoice %s (recurring %s)", created.id, invoice.id, recur.id)
        return SyncResult(SyncOutcome.CREATED, created.id)
