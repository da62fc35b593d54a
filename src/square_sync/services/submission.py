"""Outbound payment, subscription and refund submission.

Idempotency keys include a timestamp, so a client-side retry of an identical
request is a new request at the gateway. Callers that retry must reuse the
result of the first attempt instead.
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable

from square_sync.config import GatewayConfig
from square_sync.errors import DecodeError, NotFoundError, RefundRejectedError, ValidationError
from square_sync.gateway.client import GatewayClient
from square_sync.gateway.types import GatewayRefund, GatewaySubscription, Money
from square_sync.money import quantize, to_minor_units
from square_sync.repositories.base import Repositories
from square_sync.services.customer_provisioner import BillingDetails, CustomerProvisioner
from square_sync.services.plan_resolver import PlanResolver
from square_sync.services.state_machine import ContributionStatus, RecurStatus, map_payment_status

logger = logging.getLogger(__name__)

ACCEPTED_REFUND_STATUSES = frozenset({"PENDING", "COMPLETED", "APPROVED"})


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


# =============================================================================
# Requests and results
# =============================================================================


@dataclass(frozen=True)
class PaymentRequest:
    """One-time card payment."""

    contact_id: int
    token: str
    amount: Decimal
    currency: str = "USD"
    contribution_id: int | None = None
    reference_id: str | None = None

    @property
    def effective_reference_id(self) -> str | None:
        if self.reference_id:
            return self.reference_id
        return str(self.contribution_id) if self.contribution_id else None


@dataclass(frozen=True)
class RecurringPaymentRequest:
    """Recurring subscription for an existing recurring contribution.

    token_is_card_id marks a token that is already a stored card id, so no
    new card is attached.
    """

    contact_id: int
    recur_id: int
    token: str
    amount: Decimal
    frequency_unit: str
    frequency_interval: int = 1
    currency: str = "USD"
    installments: int | None = None
    component: str = "contribute"
    token_is_card_id: bool = False
    billing: BillingDetails | None = None
    verification_token: str | None = None


@dataclass(frozen=True)
class RefundRequest:
    payment_id: str
    amount: Decimal
    currency: str = "USD"


@dataclass(frozen=True)
class OneTimePaymentResult:
    payment_id: str
    status: ContributionStatus
    gateway_status: str
    customer_id: str
    amount_money: Money
    idempotency_key: str


@dataclass(frozen=True)
class RecurringPaymentResult:
    subscription_id: str
    customer_id: str
    card_id: str
    plan_variation_id: str
    start_date: str
    status: RecurStatus
    idempotency_key: str


# =============================================================================
# Service
# =============================================================================


class SubmissionService:
    """Builds and sends outbound gateway requests and records their results."""

    def __init__(
        self,
        client: GatewayClient,
        repositories: Repositories,
        provisioner: CustomerProvisioner,
        plans: PlanResolver,
        config_provider: Callable[[], GatewayConfig] = GatewayConfig.from_env,
        clock: Callable[[], float] = time.time,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.repos = repositories
        self.provisioner = provisioner
        self.plans = plans
        self._config_provider = config_provider
        self._clock = clock
        self._today = today

    # -------------------------------------------------------------------------
    # Idempotency keys
    # -------------------------------------------------------------------------

    def one_time_idempotency_key(self, request: PaymentRequest) -> str:
        params = json.dumps(asdict(request), sort_keys=True, default=str)
        return "onetime_" + _md5(f"{params}{self._clock()}")

    def recurring_idempotency_key(self, recur_id: int, customer_id: str, card_id: str) -> str:
        return f"recur_{recur_id}_" + _md5(f"{customer_id}{card_id}{self._clock()}")

    # -------------------------------------------------------------------------
    # One-time payments
    # -------------------------------------------------------------------------

    def submit_payment(self, request: PaymentRequest) -> OneTimePaymentResult:
        """Charge a tokenized card once.

        The gateway customer is provisioned lazily. When the request names a
        contribution, its trxn_id and status are written back.
        """
        if not request.token:
            raise ValidationError("Missing payment token.")
        amount_minor = to_minor_units(request.amount)
        if amount_minor <= 0:
            raise ValidationError("Payment amount must be greater than zero.")

        if request.contribution_id and self.repos.contributions.get(request.contribution_id) is None:
            raise NotFoundError(f"Contribution {request.contribution_id} not found.")

        location_id = self._config_provider().require_location_id()
        customer_id = self.provisioner.ensure_customer(request.contact_id)
        key = self.one_time_idempotency_key(request)
        money = Money(amount_minor, request.currency)

        body: dict[str, Any] = {
            "idempotency_key": key,
            "source_id": request.token,
            "amount_money": money.to_dict(),
            "location_id": location_id,
            "customer_id": customer_id,
        }
        reference_id = request.effective_reference_id
        if reference_id:
            body["reference_id"] = reference_id

        resp = self.client.create_payment(body)
        payment = resp.get("payment") or {}
        payment_id = payment.get("id")
        if not payment_id:
            raise DecodeError("Gateway payment response has no payment id.", raw=str(resp))

        gateway_status = payment.get("status") or "UNKNOWN"
        status = map_payment_status(gateway_status)
        if request.contribution_id:
            self.repos.contributions.update(
                request.contribution_id,
                trxn_id=payment_id,
                contribution_status=status.value,
            )
        logger.info("Payment %s submitted for contact %s: %s", payment_id, request.contact_id, gateway_status)
        return OneTimePaymentResult(
            payment_id=payment_id,
            status=status,
            gateway_status=gateway_status,
            customer_id=customer_id,
            amount_money=money,
            idempotency_key=key,
        )

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def submit_recurring(self, request: RecurringPaymentRequest) -> RecurringPaymentResult:
        """Create the gateway subscription for a recurring contribution.

        The start date is always tomorrow: a same-day start is rejected once
        UTC has rolled over to the next day.
        """
        if not request.token:
            raise ValidationError("Missing card token for recurring payment.")
        if not request.recur_id:
            raise ValidationError("Missing recurring contribution ID.")
        recur = self.repos.recurring.get(request.recur_id)
        if recur is None:
            raise NotFoundError(f"Recurring contribution {request.recur_id} not found.")

        location_id = self._config_provider().require_location_id()
        customer_id = self.provisioner.ensure_customer(request.contact_id)
        if not self.client.get_customer(customer_id):
            raise NotFoundError(f"Gateway customer {customer_id} not found for recurring {request.recur_id}.")
        contact = self.repos.contacts.get(request.contact_id)
        if contact is not None:
            self.provisioner.sync_customer_details(
                customer_id,
                first_name=contact.first_name,
                last_name=contact.last_name,
                email=contact.email,
                contact_id=contact.id,
            )

        if request.token_is_card_id:
            card_id = request.token
        else:
            card_id = self.provisioner.attach_card(
                customer_id,
                request.token,
                billing=request.billing,
                verification_token=request.verification_token,
                contact_id=request.contact_id,
            )

        variation_id = self.plans.plan_variation_for(
            request.component,
            request.amount,
            request.currency,
            request.frequency_unit,
            request.frequency_interval,
            request.installments,
        )
        start_date = (self._today() + timedelta(days=1)).isoformat()
        key = self.recurring_idempotency_key(request.recur_id, customer_id, card_id)
        note = json.dumps(
            {"contact_id": str(request.contact_id), "recur_id": str(request.recur_id)},
            separators=(",", ":"),
        )

        resp = self.client.create_subscription(
            {
                "idempotency_key": key,
                "location_id": location_id,
                "plan_variation_id": variation_id,
                "customer_id": customer_id,
                "card_id": card_id,
                "start_date": start_date,
                "source": {"name": note},
            }
        )
        subscription_id = (resp.get("subscription") or {}).get("id")
        if not subscription_id:
            raise DecodeError("Gateway subscription response has no subscription id.", raw=str(resp))

        self.repos.recurring.update(
            request.recur_id,
            processor_id=subscription_id,
            trxn_id=subscription_id,
            contribution_status=RecurStatus.PENDING.value,
        )
        logger.info("Subscription %s created for recurring %s", subscription_id, request.recur_id)
        return RecurringPaymentResult(
            subscription_id=subscription_id,
            customer_id=customer_id,
            card_id=card_id,
            plan_variation_id=variation_id,
            start_date=start_date,
            status=RecurStatus.PENDING,
            idempotency_key=key,
        )

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        if not subscription_id:
            raise ValidationError("Missing subscription ID to cancel.")
        return self.client.cancel_subscription(subscription_id)

    def _update_subscription(self, subscription_id: str, changes: dict[str, Any]) -> GatewaySubscription:
        if not subscription_id:
            raise ValidationError("Missing subscription ID to update.")
        current = self.client.get_subscription(subscription_id)
        if not current:
            raise NotFoundError(f"Gateway subscription {subscription_id} not found.")
        version = GatewaySubscription.from_dict(current).version
        resp = self.client.update_subscription(subscription_id, {"version": version, **changes})
        return GatewaySubscription.from_dict(resp.get("subscription") or {"id": subscription_id})

    def update_subscription_amount(
        self,
        subscription_id: str,
        amount: Decimal | str,
        currency: str = "USD",
    ) -> GatewaySubscription:
        amount_minor = to_minor_units(amount)
        if amount_minor <= 0:
            raise ValidationError("Subscription amount must be greater than zero.")
        return self._update_subscription(
            subscription_id,
            {"price_override_money": Money(amount_minor, currency).to_dict()},
        )

    def update_subscription_billing_date(self, subscription_id: str, next_billing_date: date) -> GatewaySubscription:
        return self._update_subscription(subscription_id, {"start_date": next_billing_date.isoformat()})

    def update_subscription_plan(self, subscription_id: str, plan_variation_id: str) -> GatewaySubscription:
        if not plan_variation_id:
            raise ValidationError("Missing plan variation ID.")
        return self._update_subscription(subscription_id, {"plan_variation_id": plan_variation_id})

    # -------------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------------

    def submit_refund(self, request: RefundRequest) -> GatewayRefund:
        if not request.payment_id:
            raise ValidationError("Missing transaction ID for refund.")
        amount_minor = to_minor_units(request.amount)
        if amount_minor <= 0:
            raise ValidationError("Refund amount must be greater than zero.")

        resp = self.client.create_refund(
            {
                "idempotency_key": secrets.token_hex(8),
                "payment_id": request.payment_id,
                "amount_money": Money(amount_minor, request.currency).to_dict(),
            }
        )
        data = resp.get("refund") or {}
        if not data.get("id"):
            raise DecodeError("Gateway refund response has no refund id.", raw=str(resp))

        refund = GatewayRefund.from_dict(data)
        if refund.status.upper() not in ACCEPTED_REFUND_STATUSES:
            logger.warning("Refund %s for payment %s not accepted: %s", refund.id, request.payment_id, refund.status)
            raise RefundRejectedError(200, message=f"Refund not completed. Status: {refund.status}")
        logger.info(
            "Refund %s of %s %s submitted for payment %s",
            refund.id,
            quantize(request.amount),
            request.currency,
            request.payment_id,
        )
        return refund
