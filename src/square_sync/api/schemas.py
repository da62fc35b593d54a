"""Pydantic schemas for API request/response models."""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from square_sync.services.customer_provisioner import BillingDetails
from square_sync.services.submission import PaymentRequest, RecurringPaymentRequest, RefundRequest


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str | None = None
    errors: list[dict[str, Any]] | None = None


# ============================================================================
# Payments
# ============================================================================


class PaymentCreate(BaseModel):
    """One-time payment with a browser-generated card token."""

    contact_id: int = Field(gt=0)
    token: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    contribution_id: int | None = None
    reference_id: str | None = None

    def to_request(self) -> PaymentRequest:
        return PaymentRequest(
            contact_id=self.contact_id,
            token=self.token,
            amount=self.amount,
            currency=self.currency,
            contribution_id=self.contribution_id,
            reference_id=self.reference_id,
        )


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_id: str
    status: str
    gateway_status: str
    customer_id: str


class BillingAddress(BaseModel):
    cardholder_name: str | None = None
    street_address: str | None = None
    street_address_2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class RecurringCreate(BaseModel):
    """Subscription for an existing recurring contribution."""

    contact_id: int = Field(gt=0)
    recur_id: int = Field(gt=0)
    token: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, decimal_places=2)
    frequency_unit: str
    frequency_interval: int = Field(default=1, ge=1)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    installments: int | None = Field(default=None, ge=0)
    component: str = "contribute"
    token_is_card_id: bool = False
    verification_token: str | None = None
    billing: BillingAddress | None = None

    def to_request(self) -> RecurringPaymentRequest:
        return RecurringPaymentRequest(
            contact_id=self.contact_id,
            recur_id=self.recur_id,
            token=self.token,
            amount=self.amount,
            frequency_unit=self.frequency_unit,
            frequency_interval=self.frequency_interval,
            currency=self.currency,
            installments=self.installments,
            component=self.component,
            token_is_card_id=self.token_is_card_id,
            billing=BillingDetails.from_dict(self.billing.model_dump()) if self.billing else None,
            verification_token=self.verification_token,
        )


class RecurringResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subscription_id: str
    customer_id: str
    card_id: str
    plan_variation_id: str
    start_date: date
    status: str


class RefundCreate(BaseModel):
    payment_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)

    def to_request(self) -> RefundRequest:
        return RefundRequest(payment_id=self.payment_id, amount=self.amount, currency=self.currency)


class RefundResponse(BaseModel):
    refund_id: str
    payment_id: str
    status: str
    sync_outcome: str


class SyncResponse(BaseModel):
    """Outcome of a local sync."""

    outcome: str
    record_id: int | None = None
    reason: str | None = None
