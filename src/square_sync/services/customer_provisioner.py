"""Gateway customer and card-on-file provisioning.

Resolution order for a contact's gateway customer (first match wins):

1. the mapping cached on the contact
2. gateway customer whose reference_id is the contact id
3. gateway customer with the contact's email
4. a newly created gateway customer

Steps 2-4 run under a per-contact lock with the cached mapping re-checked
after acquiring it, so concurrent calls for one contact create exactly one
gateway customer. A customer already mapped to a different contact is a
ConflictError, never a silent re-map.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from square_sync.errors import (
    CardDeclinedError,
    ConflictError,
    DecodeError,
    GatewayErrorDetail,
    NotFoundError,
    ProtocolError,
    ValidationError,
)
from square_sync.gateway.client import GatewayClient
from square_sync.locking import KeyedLock
from square_sync.repositories.base import Contact, ContactRepository

logger = logging.getLogger(__name__)

COUNTRY_CODES = {
    "US": "US",
    "USA": "US",
    "UNITED STATES": "US",
    "UNITED STATES OF AMERICA": "US",
    "CA": "CA",
    "CANADA": "CA",
    "GB": "GB",
    "UK": "GB",
    "UNITED KINGDOM": "GB",
}
DEFAULT_COUNTRY = "US"

CARD_ERROR_MESSAGES = {
    "CARD_DECLINED": "Your card was declined. Please use a different card.",
    "GENERIC_DECLINE": "The card was declined by the bank.",
    "INVALID_EXPIRATION": "The card expiration date is invalid.",
    "CVV_FAILURE": "The CVV security code is incorrect.",
    "ADDRESS_VERIFICATION_FAILURE": "The billing ZIP/postal code did not match the card.",
    "INSUFFICIENT_FUNDS": "The card has insufficient funds.",
}
FALLBACK_CARD_ERROR = "The card could not be processed."


def normalize_country(country: str | None) -> str:
    """Map a country name or code to ISO-2. Unknown values become US."""
    return COUNTRY_CODES.get((country or "").strip().upper(), DEFAULT_COUNTRY)


def translate_card_errors(errors: list[GatewayErrorDetail]) -> str:
    """Build a payer-facing message from the gateway's card errors."""
    messages = []
    for err in errors:
        msg = CARD_ERROR_MESSAGES.get(err.code) or err.detail or FALLBACK_CARD_ERROR
        messages.append(msg)
    return " ".join(messages) if messages else FALLBACK_CARD_ERROR


@dataclass(frozen=True)
class BillingDetails:
    """Optional card metadata and billing address."""

    cardholder_name: str | None = None
    street_address: str | None = None
    street_address_2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BillingDetails | None:
        if not data:
            return None
        return cls(
            cardholder_name=data.get("cardholder_name"),
            street_address=data.get("street_address"),
            street_address_2=data.get("street_address_2"),
            city=data.get("city"),
            state=data.get("state"),
            postal_code=data.get("postal_code"),
            country=data.get("country"),
        )

    @property
    def has_address(self) -> bool:
        return any(
            (self.street_address, self.street_address_2, self.city, self.state, self.postal_code, self.country)
        )

    def address_body(self) -> dict[str, Any]:
        body = {
            "address_line_1": self.street_address,
            "address_line_2": self.street_address_2,
            "locality": self.city,
            "administrative_district_level_1": self.state,
            "postal_code": self.postal_code,
        }
        body = {k: v for k, v in body.items() if v}
        body["country"] = normalize_country(self.country)
        return body


class CustomerProvisioner:
    """Resolves or creates the gateway customer and card for a contact."""

    def __init__(
        self,
        client: GatewayClient,
        contacts: ContactRepository,
        locks: KeyedLock | None = None,
        idempotency_key: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.client = client
        self.contacts = contacts
        self.locks = locks or KeyedLock()
        self._idempotency_key = idempotency_key

    def ensure_customer(
        self,
        contact_id: int | None,
        card_token: str | None = None,
        billing: BillingDetails | None = None,
        verification_token: str | None = None,
    ) -> str:
        """Return the gateway customer id for a contact, creating it if needed.

        When a card token is given it is attached to the customer and the card
        id stored on the contact, whichever branch resolved the customer.
        """
        if not contact_id:
            raise ValidationError("Contact ID is required to provision a gateway customer.")

        contact = self._load(contact_id)
        customer_id = contact.gateway_customer_id
        if not customer_id:
            with self.locks.hold(("customer", contact_id)):
                customer_id = self._resolve_locked(contact_id)

        if card_token:
            self.attach_card(
                customer_id,
                card_token,
                billing=billing,
                verification_token=verification_token,
                contact_id=contact_id,
            )
        return customer_id

    def _load(self, contact_id: int) -> Contact:
        contact = self.contacts.get(contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found.")
        return contact

    def _resolve_locked(self, contact_id: int) -> str:
        # Another caller may have finished while we waited for the lock.
        contact = self._load(contact_id)
        if contact.gateway_customer_id:
            return contact.gateway_customer_id

        existing = self.client.find_customer_by_reference(str(contact_id))
        if existing and existing.get("id"):
            return self._adopt(contact_id, existing["id"], "reference_id")

        if contact.email:
            existing = self.client.find_customer_by_email(contact.email)
            if existing and existing.get("id"):
                return self._adopt(contact_id, existing["id"], "email")

        customer_id = self._create(contact)
        self.contacts.update_gateway_ids(contact_id, customer_id=customer_id)
        logger.info("Created gateway customer %s for contact %s", customer_id, contact_id)
        return customer_id

    def _adopt(self, contact_id: int, customer_id: str, matched_on: str) -> str:
        mapped = self.contacts.find_by_customer_id(customer_id)
        if mapped is not None and mapped.id != contact_id:
            logger.warning(
                "Gateway customer %s (matched on %s) is mapped to contact %s, not %s",
                customer_id,
                matched_on,
                mapped.id,
                contact_id,
            )
            raise ConflictError(contact_id, customer_id, mapped.id)
        self.contacts.update_gateway_ids(contact_id, customer_id=customer_id)
        logger.info("Linked contact %s to existing gateway customer %s by %s", contact_id, customer_id, matched_on)
        return customer_id

    def _create(self, contact: Contact) -> str:
        body = {
            "idempotency_key": self._idempotency_key(),
            "given_name": contact.first_name,
            "family_name": contact.last_name,
            "email_address": contact.email,
            "reference_id": str(contact.id),
        }
        resp = self.client.create_customer({k: v for k, v in body.items() if v})
        customer_id = (resp.get("customer") or {}).get("id")
        if not customer_id:
            raise DecodeError("Gateway did not return a customer id.", raw=str(resp))
        return customer_id

    def attach_card(
        self,
        customer_id: str,
        token: str,
        billing: BillingDetails | None = None,
        verification_token: str | None = None,
        contact_id: int | None = None,
    ) -> str:
        """Store a tokenized card on the customer and return the card id.

        Gateway rejections with structured errors become CardDeclinedError with
        a payer-facing message.
        """
        if not token:
            raise ValidationError("Missing card token.")

        card: dict[str, Any] = {"customer_id": customer_id}
        if billing is not None:
            if billing.cardholder_name:
                card["cardholder_name"] = billing.cardholder_name
            if billing.has_address:
                card["billing_address"] = billing.address_body()

        body: dict[str, Any] = {
            "idempotency_key": self._idempotency_key(),
            "source_id": token,
            "card": card,
        }
        if verification_token:
            body["verification_token"] = verification_token

        try:
            resp = self.client.create_card(body)
        except ProtocolError as e:
            if e.errors:
                message = translate_card_errors(e.errors)
                logger.info("Card rejected for customer %s: %s", customer_id, e.error_codes)
                raise CardDeclinedError(e.status_code, e.errors, message) from e
            raise

        card_id = (resp.get("card") or {}).get("id")
        if not card_id:
            raise DecodeError("Gateway did not return a card id.", raw=str(resp))

        if contact_id:
            self.contacts.update_gateway_ids(contact_id, card_id=card_id)
        return card_id

    def sync_customer_details(
        self,
        customer_id: str,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        contact_id: int | None = None,
    ) -> dict[str, Any] | None:
        """Push non-empty name/email fields to the gateway customer."""
        body = {
            "given_name": first_name,
            "family_name": last_name,
            "email_address": email,
            "reference_id": str(contact_id) if contact_id else None,
        }
        body = {k: v for k, v in body.items() if v}
        if not body:
            return None
        return self.client.update_customer(customer_id, body)
