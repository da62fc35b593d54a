"""Square Bridge facade - single integration path.

Wires the gateway client, provisioning, plan resolution, sync engine,
submission and webhook receiver around one set of repositories.

Usage:
    bridge = SquareBridge(repositories)

    # Inbound webhook (verify, dedupe, dispatch)
    response = bridge.handle_webhook(raw_body, headers)

    # One-time payment
    result = bridge.submit_payment(PaymentRequest(...))

    # Recurring subscription for an existing recurring contribution
    result = bridge.submit_recurring(RecurringPaymentRequest(...))

    # Refund; the local contribution is marked refunded right away
    result = bridge.refund(RefundRequest(...))

Gateway-side cancellation and amount changes are mirrored locally right
away instead of waiting for the webhook.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Mapping

from square_sync.config import GatewayConfig
from square_sync.gateway.client import GatewayClient
from square_sync.gateway.types import GatewayRefund
from square_sync.locking import KeyedLock
from square_sync.repositories.base import Repositories
from square_sync.services.customer_provisioner import CustomerProvisioner
from square_sync.services.dedup import DedupCache
from square_sync.services.plan_resolver import PlanResolver
from square_sync.services.submission import (
    OneTimePaymentResult,
    PaymentRequest,
    RecurringPaymentRequest,
    RecurringPaymentResult,
    RefundRequest,
    SubmissionService,
)
from square_sync.services.sync_engine import SyncEngine, SyncResult
from square_sync.services.webhook_receiver import WebhookReceiver, WebhookResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundResult:
    refund: GatewayRefund
    sync: SyncResult


class SquareBridge:
    """Facade over all square_sync services."""

    def __init__(
        self,
        repositories: Repositories,
        client: GatewayClient | None = None,
        config_provider: Callable[[], GatewayConfig] = GatewayConfig.from_env,
        dedup: DedupCache | None = None,
        submission: SubmissionService | None = None,
    ):
        self.repos = repositories
        self.config_provider = config_provider
        self.client = client or GatewayClient(config_provider)
        self.locks = KeyedLock()

        self.provisioner = CustomerProvisioner(self.client, repositories.contacts, self.locks)
        self.plans = PlanResolver(
            self.client,
            repositories.settings,
            plan_prefix=lambda: config_provider().plan_prefix,
            locks=self.locks,
        )
        self.engine = SyncEngine(self.client, repositories, self.locks)
        self.submission = submission or SubmissionService(
            self.client,
            repositories,
            self.provisioner,
            self.plans,
            config_provider=config_provider,
        )
        self.receiver = WebhookReceiver(self.engine, dedup or DedupCache(), config_provider)

    # =========================================================================
    # Inbound
    # =========================================================================

    def handle_webhook(self, raw_body: bytes | str, headers: Mapping[str, str]) -> WebhookResponse:
        return self.receiver.handle(raw_body, headers)

    def sync_subscription(self, subscription_id: str) -> SyncResult:
        return self.engine.sync_subscription_status(subscription_id)

    # =========================================================================
    # Outbound
    # =========================================================================

    def submit_payment(self, request: PaymentRequest) -> OneTimePaymentResult:
        return self.submission.submit_payment(request)

    def submit_recurring(self, request: RecurringPaymentRequest) -> RecurringPaymentResult:
        return self.submission.submit_recurring(request)

    def refund(self, request: RefundRequest) -> RefundResult:
        refund = self.submission.submit_refund(request)
        return RefundResult(refund=refund, sync=self.engine.sync_refund(refund))

    def cancel_subscription(self, subscription_id: str) -> SyncResult:
        self.submission.cancel_subscription(subscription_id)
        logger.info("Cancelled subscription %s at the gateway", subscription_id)
        return self.engine.cancel_subscription_locally(subscription_id)

    def update_subscription_amount(
        self,
        subscription_id: str,
        amount: Decimal | str,
        currency: str = "USD",
    ) -> SyncResult:
        updated = self.submission.update_subscription_amount(subscription_id, amount, currency)
        return self.engine.sync_subscription_status(updated)

    def update_subscription_billing_date(self, subscription_id: str, next_billing_date: date) -> SyncResult:
        updated = self.submission.update_subscription_billing_date(subscription_id, next_billing_date)
        return self.engine.sync_subscription_status(updated)

    def update_subscription_plan(self, subscription_id: str, plan_variation_id: str) -> SyncResult:
        updated = self.submission.update_subscription_plan(subscription_id, plan_variation_id)
        return self.engine.sync_subscription_status(updated)

    def check_config(self) -> str | None:
        return self.client.check_config()
