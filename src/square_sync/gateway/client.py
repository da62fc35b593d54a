"""Authenticated HTTP/JSON transport to the Square REST API.

Each call re-reads configuration, opens a short-lived httpx client and maps
failures onto the typed error taxonomy:

    connection failure         -> TransportError
    2xx with non-JSON body     -> DecodeError
    status outside 200-299     -> ProtocolError (with structured errors)

There is no retry. Callers that need one must build it themselves.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import httpx

from square_sync.config import GatewayConfig
from square_sync.errors import (
    ConfigurationError,
    DecodeError,
    GatewayErrorDetail,
    ProtocolError,
    TransportError,
)

logger = logging.getLogger(__name__)

ConfigProvider = Callable[[], GatewayConfig]


class GatewayClient:
    """Thin JSON client for the gateway.

    Args:
        config_provider: Returns the current GatewayConfig. Called once per
            request, so token and base URL always follow the active mode.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        config_provider: ConfigProvider = GatewayConfig.from_env,
        transport: httpx.BaseTransport | None = None,
    ):
        self._config_provider = config_provider
        self._transport = transport

    @property
    def config(self) -> GatewayConfig:
        return self._config_provider()

    def _headers(self, config: GatewayConfig) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {config.require_access_token()}",
            "Square-Version": config.api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON object."""
        config = self._config_provider()
        headers = self._headers(config)
        timeout = httpx.Timeout(config.total_timeout, connect=config.connect_timeout)
        method = method.upper()

        try:
            with httpx.Client(
                base_url=config.base_url,
                headers=headers,
                timeout=timeout,
                transport=self._transport,
            ) as client:
                response = client.request(
                    method,
                    path,
                    params=params,
                    content=json.dumps(body) if body is not None else None,
                )
        except httpx.TransportError as e:
            logger.warning("Gateway %s %s transport error: %s", method, path, e)
            raise TransportError(f"Gateway transport error: {e}") from e

        raw = response.text
        decoded: Any = None
        if raw:
            try:
                decoded = json.loads(raw)
            except ValueError:
                decoded = None

        if not 200 <= response.status_code < 300:
            errors: list[GatewayErrorDetail] = []
            if isinstance(decoded, dict):
                errors = [
                    GatewayErrorDetail.from_dict(err)
                    for err in decoded.get("errors") or []
                    if isinstance(err, dict)
                ]
            exc = ProtocolError(response.status_code, errors)
            logger.warning("Gateway %s %s failed: %s", method, path, exc)
            raise exc

        if not isinstance(decoded, dict):
            logger.warning("Gateway %s %s returned undecodable body: %.200s", method, path, raw)
            raise DecodeError("Failed to decode gateway response JSON.", raw=raw)

        return decoded

    # =========================================================================
    # Customers
    # =========================================================================

    def list_customers(self, **filters: str) -> list[dict[str, Any]]:
        resp = self.request("GET", "/v2/customers", params=filters or None)
        return resp.get("customers") or []

    def find_customer_by_reference(self, reference_id: str) -> dict[str, Any] | None:
        customers = self.list_customers(reference_id=reference_id)
        return customers[0] if customers else None

    def find_customer_by_email(self, email: str) -> dict[str, Any] | None:
        if not email:
            return None
        customers = self.list_customers(email_address=email)
        return customers[0] if customers else None

    def get_customer(self, customer_id: str) -> dict[str, Any] | None:
        resp = self.request("GET", f"/v2/customers/{customer_id}")
        return resp.get("customer")

    def create_customer(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", "/v2/customers", body)

    def update_customer(self, customer_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("PUT", f"/v2/customers/{customer_id}", body)

    # =========================================================================
    # Cards, payments, refunds
    # =========================================================================

    def create_card(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", "/v2/cards", body)

    def create_payment(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", "/v2/payments", body)

    def create_refund(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", "/v2/refunds", body)

    # =========================================================================
    # Subscriptions and catalog
    # =========================================================================

    def create_subscription(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", "/v2/subscriptions", body)

    def get_subscription(self, subscription_id: str) -> dict[str, Any] | None:
        resp = self.request("GET", f"/v2/subscriptions/{subscription_id}")
        return resp.get("subscription")

    def update_subscription(self, subscription_id: str, subscription: dict[str, Any]) -> dict[str, Any]:
        return self.request("PUT", f"/v2/subscriptions/{subscription_id}", {"subscription": subscription})

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self.request("POST", f"/v2/subscriptions/{subscription_id}/cancel", {})

    def create_catalog_object(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", "/v2/catalog/object", body)

    def check_config(self) -> str | None:
        """Make a cheap authenticated call. Returns None if healthy, else a message."""
        config = self._config_provider()
        try:
            self.request("GET", "/v2/customers", params={"limit": 1})
        except (ConfigurationError, TransportError, DecodeError, ProtocolError) as e:
            msg = f"Square checkConfig failure ({config.mode_label}): {e}"
            logger.info(msg)
            return msg
        return None
