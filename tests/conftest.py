"""Pytest fixtures for square_sync tests."""

from __future__ import annotations

import itertools
import json
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

import httpx
import pytest

from square_sync.bridge import SquareBridge
from square_sync.config import GatewayConfig
from square_sync.gateway.client import GatewayClient
from square_sync.locking import KeyedLock
from square_sync.repositories.base import Contact, Repositories
from square_sync.repositories.memory import in_memory_repositories
from square_sync.services.customer_provisioner import CustomerProvisioner
from square_sync.services.plan_resolver import PlanResolver
from square_sync.services.submission import SubmissionService
from square_sync.services.sync_engine import SyncEngine
from square_sync.services.webhook_receiver import compute_signature

NOTIFICATION_URL = "https://crm.example.org/webhooks/square"
SIGNATURE_KEY = "test-signature-key"


@dataclass
class Call:
    method: str
    path: str
    params: dict[str, str]
    body: dict[str, Any] | None
    headers: dict[str, str] = field(repr=False)


class FakeSquare:
    """In-memory stand-in for the Square REST API behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self.customers: dict[str, dict[str, Any]] = {}
        self.cards: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}
        self.refunds: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.catalog: dict[str, dict[str, Any]] = {}
        self.failures: dict[tuple[str, str], tuple[int, Any]] = {}
        self.payment_status = "COMPLETED"
        self.refund_status = "PENDING"
        self.create_delay = 0.0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # -- scripting ------------------------------------------------------------

    def next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def fail(self, method: str, path: str, status: int, errors: list[dict] | None = None, raw: str | None = None):
        payload: Any = raw if raw is not None else {"errors": errors or []}
        self.failures[(method.upper(), path)] = (status, payload)

    def add_customer(self, **data: Any) -> dict[str, Any]:
        customer = {"id": data.pop("id", None) or self.next_id("CUST"), **data}
        self.customers[customer["id"]] = customer
        return customer

    def add_subscription(self, **data: Any) -> dict[str, Any]:
        sub = {"id": data.pop("id", None) or self.next_id("SUB"), "status": "ACTIVE", "version": 1, **data}
        self.subscriptions[sub["id"]] = sub
        return sub

    def calls_to(self, method: str, path: str) -> list[Call]:
        return [c for c in self.calls if c.method == method.upper() and c.path == path]

    # -- transport ------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        call = Call(request.method, request.url.path, dict(request.url.params), body, dict(request.headers))
        with self._lock:
            self.calls.append(call)

        failure = self.failures.get((call.method, call.path))
        if failure is not None:
            status, payload = failure
            if isinstance(payload, str):
                return httpx.Response(status, content=payload.encode())
            return httpx.Response(status, json=payload)

        for (method, pattern), route in self._routes().items():
            match = re.fullmatch(pattern, call.path)
            if method == call.method and match:
                return route(call, *match.groups())
        return self._not_found()

    def _routes(self) -> dict[tuple[str, str], Callable[..., httpx.Response]]:
        return {
            ("GET", r"/v2/customers"): self._list_customers,
            ("POST", r"/v2/customers"): self._create_customer,
            ("GET", r"/v2/customers/([^/]+)"): self._get_customer,
            ("PUT", r"/v2/customers/([^/]+)"): self._update_customer,
            ("POST", r"/v2/cards"): self._create_card,
            ("POST", r"/v2/payments"): self._create_payment,
            ("POST", r"/v2/refunds"): self._create_refund,
            ("POST", r"/v2/subscriptions"): self._create_subscription,
            ("GET", r"/v2/subscriptions/([^/]+)"): self._get_subscription,
            ("PUT", r"/v2/subscriptions/([^/]+)"): self._update_subscription,
            ("POST", r"/v2/subscriptions/([^/]+)/cancel"): self._cancel_subscription,
            ("POST", r"/v2/catalog/object"): self._create_catalog_object,
        }

    @staticmethod
    def _not_found() -> httpx.Response:
        return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND", "detail": "Not found", "category": "INVALID_REQUEST_ERROR"}]})

    def _list_customers(self, call: Call) -> httpx.Response:
        customers = list(self.customers.values())
        if "reference_id" in call.params:
            customers = [c for c in customers if c.get("reference_id") == call.params["reference_id"]]
        if "email_address" in call.params:
            customers = [c for c in customers if c.get("email_address") == call.params["email_address"]]
        return httpx.Response(200, json={"customers": customers} if customers else {})

    def _create_customer(self, call: Call) -> httpx.Response:
        if self.create_delay:
            time.sleep(self.create_delay)
        data = {k: v for k, v in (call.body or {}).items() if k != "idempotency_key"}
        with self._lock:
            customer = self.add_customer(**data)
        return httpx.Response(200, json={"customer": customer})

    def _get_customer(self, call: Call, customer_id: str) -> httpx.Response:
        if customer_id not in self.customers:
            return self._not_found()
        return httpx.Response(200, json={"customer": self.customers[customer_id]})

    def _update_customer(self, call: Call, customer_id: str) -> httpx.Response:
        if customer_id not in self.customers:
            return self._not_found()
        self.customers[customer_id].update(call.body or {})
        return httpx.Response(200, json={"customer": self.customers[customer_id]})

    def _create_card(self, call: Call) -> httpx.Response:
        card = {"id": self.next_id("CARD"), **(call.body or {}).get("card", {})}
        self.cards[card["id"]] = card
        return httpx.Response(200, json={"card": card})

    def _create_payment(self, call: Call) -> httpx.Response:
        body = call.body or {}
        payment = {
            "id": self.next_id("PAY"),
            "status": self.payment_status,
            "amount_money": body.get("amount_money"),
            "customer_id": body.get("customer_id"),
            "reference_id": body.get("reference_id"),
            "location_id": body.get("location_id"),
        }
        self.payments[payment["id"]] = payment
        return httpx.Response(200, json={"payment": payment})

    def _create_refund(self, call: Call) -> httpx.Response:
        body = call.body or {}
        refund = {
            "id": self.next_id("REF"),
            "payment_id": body.get("payment_id"),
            "status": self.refund_status,
            "amount_money": body.get("amount_money"),
        }
        self.refunds[refund["id"]] = refund
        return httpx.Response(200, json={"refund": refund})

    def _create_subscription(self, call: Call) -> httpx.Response:
        data = {k: v for k, v in (call.body or {}).items() if k != "idempotency_key"}
        sub = self.add_subscription(status="PENDING", **data)
        return httpx.Response(200, json={"subscription": sub})

    def _get_subscription(self, call: Call, subscription_id: str) -> httpx.Response:
        if subscription_id not in self.subscriptions:
            return self._not_found()
        return httpx.Response(200, json={"subscription": self.subscriptions[subscription_id]})

    def _update_subscription(self, call: Call, subscription_id: str) -> httpx.Response:
        sub = self.subscriptions.get(subscription_id)
        if sub is None:
            return self._not_found()
        changes = dict((call.body or {}).get("subscription") or {})
        if changes.pop("version", None) != sub["version"]:
            return httpx.Response(409, json={"errors": [{"code": "CONFLICT", "detail": "Version mismatch"}]})
        sub.update(changes)
        sub["version"] += 1
        return httpx.Response(200, json={"subscription": sub})

    def _cancel_subscription(self, call: Call, subscription_id: str) -> httpx.Response:
        sub = self.subscriptions.get(subscription_id)
        if sub is None:
            return self._not_found()
        sub["status"] = "CANCELED"
        return httpx.Response(200, json={"subscription": sub})

    def _create_catalog_object(self, call: Call) -> httpx.Response:
        obj = dict((call.body or {}).get("object") or {})
        if self.create_delay:
            time.sleep(self.create_delay)
        with self._lock:
            obj["id"] = self.next_id(obj.get("type", "OBJ"))
            self.catalog[obj["id"]] = obj
        return httpx.Response(200, json={"catalog_object": obj})


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        is_test=True,
        access_token="sandbox-token",
        location_id="LOC_1",
        webhook_signature_key=SIGNATURE_KEY,
        notification_url=NOTIFICATION_URL,
        api_base_url="https://square.test",
    )


@pytest.fixture
def fake_square() -> FakeSquare:
    return FakeSquare()


@pytest.fixture
def gateway_client(fake_square: FakeSquare, gateway_config: GatewayConfig) -> GatewayClient:
    return GatewayClient(lambda: gateway_config, transport=httpx.MockTransport(fake_square.handler))


@pytest.fixture
def repos() -> Repositories:
    return in_memory_repositories(
        [
            Contact(id=7, first_name="Ada", last_name="Lovelace", email="ada@example.org"),
            Contact(id=8, first_name="Grace", last_name="Hopper", email="grace@example.org"),
        ]
    )


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def provisioner(gateway_client: GatewayClient, repos: Repositories, locks: KeyedLock) -> CustomerProvisioner:
    return CustomerProvisioner(gateway_client, repos.contacts, locks)


@pytest.fixture
def plans(gateway_client: GatewayClient, repos: Repositories, locks: KeyedLock) -> PlanResolver:
    return PlanResolver(gateway_client, repos.settings, locks=locks)


@pytest.fixture
def engine(gateway_client: GatewayClient, repos: Repositories) -> SyncEngine:
    return SyncEngine(gateway_client, repos)


@pytest.fixture
def submission(
    gateway_client: GatewayClient,
    repos: Repositories,
    provisioner: CustomerProvisioner,
    plans: PlanResolver,
    gateway_config: GatewayConfig,
) -> SubmissionService:
    return SubmissionService(
        gateway_client,
        repos,
        provisioner,
        plans,
        config_provider=lambda: gateway_config,
        clock=lambda: 1700000000.0,
        today=lambda: date(2025, 3, 31),
    )


@pytest.fixture
def bridge(
    repos: Repositories,
    gateway_client: GatewayClient,
    gateway_config: GatewayConfig,
    submission: SubmissionService,
) -> SquareBridge:
    return SquareBridge(
        repos,
        client=gateway_client,
        config_provider=lambda: gateway_config,
        submission=submission,
    )


@pytest.fixture
def signed() -> Callable[[dict[str, Any]], tuple[bytes, dict[str, str]]]:
    """Serialize an event and return (raw_body, headers) with a valid signature."""

    def _sign(event: dict[str, Any]) -> tuple[bytes, dict[str, str]]:
        raw = json.dumps(event).encode()
        return raw, {"X-Square-Signature": compute_signature(NOTIFICATION_URL, raw, SIGNATURE_KEY)}

    return _sign
