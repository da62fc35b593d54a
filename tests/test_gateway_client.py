"""Tests for the gateway HTTP client."""

from dataclasses import replace

import httpx
import pytest

from square_sync.config import DEFAULT_API_VERSION, GatewayConfig
from square_sync.errors import ConfigurationError, DecodeError, ProtocolError, TransportError
from square_sync.gateway.client import GatewayClient
from square_sync.gateway.types import GatewayInvoice, GatewayPayment, GatewaySubscription, Money


def _client(handler, config: GatewayConfig) -> GatewayClient:
    return GatewayClient(lambda: config, transport=httpx.MockTransport(handler))


class TestRequest:
    """Headers, body encoding and error mapping."""

    def test_sends_auth_and_version_headers(self, gateway_client, fake_square):
        """Every call carries bearer auth, API version and JSON content type."""
        gateway_client.request("POST", "/v2/customers", {"given_name": "Ada"})

        call = fake_square.calls[0]
        assert call.headers["authorization"] == "Bearer sandbox-token"
        assert call.headers["square-version"] == DEFAULT_API_VERSION
        assert call.headers["content-type"] == "application/json"
        assert call.body == {"given_name": "Ada"}

    def test_token_reread_on_every_call(self, fake_square, gateway_config):
        """A mode switch between calls changes the token used."""
        configs = [gateway_config, replace(gateway_config, is_test=False, access_token="live-token")]
        client = GatewayClient(lambda: configs[0], transport=httpx.MockTransport(fake_square.handler))

        client.request("GET", "/v2/customers")
        configs.pop(0)
        client.request("GET", "/v2/customers")

        assert fake_square.calls[0].headers["authorization"] == "Bearer sandbox-token"
        assert fake_square.calls[1].headers["authorization"] == "Bearer live-token"

    def test_missing_token_raises_configuration_error(self, fake_square, gateway_config):
        """No token for the active mode fails before any HTTP call."""
        client = _client(fake_square.handler, replace(gateway_config, access_token=""))

        with pytest.raises(ConfigurationError):
            client.request("GET", "/v2/customers")
        assert fake_square.calls == []

    def test_non_2xx_raises_protocol_error_with_details(self, gateway_client, fake_square):
        """Structured gateway errors are carried on the exception."""
        fake_square.fail(
            "POST",
            "/v2/payments",
            400,
            [{"code": "GENERIC_DECLINE", "detail": "Declined", "category": "PAYMENT_METHOD_ERROR"}],
        )

        with pytest.raises(ProtocolError) as exc_info:
            gateway_client.create_payment({"source_id": "cnon"})

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_codes == ["GENERIC_DECLINE"]
        assert exc_info.value.errors[0].category == "PAYMENT_METHOD_ERROR"

    def test_non_2xx_with_non_json_body_is_protocol_error(self, gateway_client, fake_square):
        """HTTP status wins over body decoding."""
        fake_square.fail("GET", "/v2/customers", 503, raw="<html>unavailable</html>")

        with pytest.raises(ProtocolError) as exc_info:
            gateway_client.list_customers()

        assert exc_info.value.status_code == 503
        assert exc_info.value.errors == []

    def test_invalid_json_raises_decode_error(self, gateway_config):
        """A 2xx body that is not a JSON object is a DecodeError."""
        client = _client(lambda request: httpx.Response(200, content=b"not-json"), gateway_config)

        with pytest.raises(DecodeError) as exc_info:
            client.request("GET", "/v2/customers")
        assert exc_info.value.raw == "not-json"

    def test_empty_body_raises_decode_error(self, gateway_config):
        client = _client(lambda request: httpx.Response(200, content=b""), gateway_config)

        with pytest.raises(DecodeError):
            client.request("GET", "/v2/customers")

    def test_connection_failure_raises_transport_error(self, gateway_config):
        """Connection-level failures are not retried."""
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler, gateway_config)

        with pytest.raises(TransportError):
            client.request("GET", "/v2/customers")
        assert len(attempts) == 1


class TestWrappers:
    """Convenience wrappers."""

    def test_find_customer_by_reference(self, gateway_client, fake_square):
        fake_square.add_customer(id="CUST_A", reference_id="7")

        assert gateway_client.find_customer_by_reference("7")["id"] == "CUST_A"
        assert gateway_client.find_customer_by_reference("8") is None
        assert fake_square.calls[0].params == {"reference_id": "7"}

    def test_find_customer_by_email_skips_empty(self, gateway_client, fake_square):
        """An empty email never hits the gateway."""
        assert gateway_client.find_customer_by_email("") is None
        assert fake_square.calls == []

    def test_update_subscription_wraps_body(self, gateway_client, fake_square):
        sub = fake_square.add_subscription(id="SUB_1", version=3)

        gateway_client.update_subscription("SUB_1", {"version": 3, "card_id": "CARD_9"})

        assert fake_square.calls[0].body == {"subscription": {"version": 3, "card_id": "CARD_9"}}
        assert sub["card_id"] == "CARD_9"


class TestCheckConfig:
    """Configuration check against the gateway."""

    def test_healthy(self, gateway_client):
        assert gateway_client.check_config() is None

    def test_reports_mode_and_failure(self, fake_square, gateway_config):
        fake_square.fail("GET", "/v2/customers", 401, [{"code": "UNAUTHORIZED", "detail": "Bad token"}])
        client = _client(fake_square.handler, gateway_config)

        message = client.check_config()

        assert message is not None
        assert "SANDBOX" in message
        assert "UNAUTHORIZED" in message

    def test_missing_token_reported_not_raised(self, fake_square, gateway_config):
        client = _client(fake_square.handler, replace(gateway_config, access_token=""))

        assert "access token" in client.check_config()


class TestPayloadTypes:
    """Decoding of gateway objects with unexpected shapes."""

    def test_money_ignores_non_object(self):
        assert Money.from_dict("5000") is None
        assert Money.from_dict({"currency": "USD"}) is None
        assert Money.from_dict({"amount": "5000"}) == Money(5000, "USD")

    def test_money_non_numeric_amount(self):
        with pytest.raises(DecodeError):
            Money.from_dict({"amount": "lots", "currency": "USD"})

    def test_subscription_non_numeric_version(self):
        with pytest.raises(DecodeError):
            GatewaySubscription.from_dict({"id": "SUB_1", "version": "v2"})

    @pytest.mark.parametrize("requests", ["oops", ["oops"], [], None, {"computed_amount_money": {}}])
    def test_invoice_odd_payment_requests(self, requests):
        invoice = GatewayInvoice.from_dict({"id": "INV_1", "payment_requests": requests})

        assert invoice.id == "INV_1"
        assert invoice.computed_amount_money is None

    def test_invoice_first_payment_request(self):
        invoice = GatewayInvoice.from_dict(
            {"id": "INV_1", "payment_requests": [{"computed_amount_money": {"amount": 2500, "currency": "USD"}}]}
        )

        assert invoice.computed_amount_money == Money(2500, "USD")

    def test_payment_numeric_reference_is_text(self):
        payment = GatewayPayment.from_dict({"id": "PAY_1", "reference_id": 42, "status": "COMPLETED"})

        assert payment.reference_id == "42"
