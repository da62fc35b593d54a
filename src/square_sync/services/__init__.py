"""Square sync services."""

from square_sync.services.customer_provisioner import BillingDetails, CustomerProvisioner
from square_sync.services.dedup import DedupCache
from square_sync.services.plan_resolver import Cadence, PlanResolver, resolve_cadence
from square_sync.services.state_machine import (
    ContributionStatus,
    RecurStateMachine,
    RecurStatus,
    map_payment_status,
    map_subscription_status,
)
from square_sync.services.submission import (
    PaymentRequest,
    RecurringPaymentRequest,
    RefundRequest,
    SubmissionService,
)
from square_sync.services.sync_engine import SyncEngine, SyncOutcome, SyncResult
from square_sync.services.webhook_receiver import WebhookEvent, WebhookReceiver, WebhookResponse

__all__ = [
    "BillingDetails",
    "Cadence",
    "ContributionStatus",
    "CustomerProvisioner",
    "DedupCache",
    "PaymentRequest",
    "PlanResolver",
    "RecurStateMachine",
    "RecurStatus",
    "RecurringPaymentRequest",
    "RefundRequest",
    "SubmissionService",
    "SyncEngine",
    "SyncOutcome",
    "SyncResult",
    "WebhookEvent",
    "WebhookReceiver",
    "WebhookResponse",
    "map_payment_status",
    "map_subscription_status",
    "resolve_cadence",
]
