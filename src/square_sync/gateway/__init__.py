"""Square REST API transport and value types."""

from square_sync.gateway.client import GatewayClient
from square_sync.gateway.types import (
    GatewayCard,
    GatewayCustomer,
    GatewayInvoice,
    GatewayPayment,
    GatewayRefund,
    GatewaySubscription,
    Money,
)

__all__ = [
    "GatewayClient",
    "GatewayCard",
    "GatewayCustomer",
    "GatewayInvoice",
    "GatewayPayment",
    "GatewayRefund",
    "GatewaySubscription",
    "Money",
]
