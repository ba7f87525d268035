# tixgo/infrastructure/payments/checkout_provider.py

from dataclasses import dataclass, field
import json
import logging
import os
from typing import Protocol

import razorpay
import requests

from tixgo.domain.exceptions import (
    PaymentProviderError,
    UnauthenticatedError,
    ValidationError,
)


logger = logging.getLogger(__name__)

CHECKOUT_CURRENCY = os.getenv("CHECKOUT_CURRENCY", "INR")

# Payment link statuses reported by Razorpay.
PAID = "paid"
OPEN_STATUSES = frozenset({"created", "partially_paid"})

# Network and 5xx failures; the request never got a usable answer.
_UNREACHABLE_ERRORS = (
    razorpay.errors.ServerError,
    razorpay.errors.GatewayError,
    requests.exceptions.RequestException,
)


@dataclass(frozen=True)
class LineItem:
    name: str
    unit_amount: int
    quantity: int
    currency: str = CHECKOUT_CURRENCY

    @property
    def total_amount(self) -> int:
        return self.unit_amount * self.quantity


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str | None
    payment_status: str
    amount_total: int
    currency: str
    transaction_ref: str | None
    metadata: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PAID

    @property
    def is_open(self) -> bool:
        return self.payment_status in OPEN_STATUSES


@dataclass(frozen=True)
class ProviderEvent:
    event_type: str
    session_id: str | None
    metadata: dict = field(default_factory=dict)


class CheckoutProvider(Protocol):
    def create_session(
        self,
        line_item: LineItem,
        success_url: str,
        cancel_url: str,
        metadata: dict,
    ) -> CheckoutSession:
        ...

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        ...

    def cancel_session(self, session_id: str) -> None:
        ...

    def verify_callback(self, params: dict) -> None:
        ...

    def parse_webhook(self, body: bytes, signature: str | None) -> ProviderEvent:
        ...


class RazorpayCheckoutProvider:
    """
    Checkout sessions backed by Razorpay Payment Links.

    The booking id travels as `reference_id` and inside `notes`, and comes
    back on every fetch, callback and webhook.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str | None = None,
    ):
        self.client = razorpay.Client(auth=(key_id, key_secret))
        self.webhook_secret = webhook_secret

    def create_session(
        self,
        line_item: LineItem,
        success_url: str,
        cancel_url: str,
        metadata: dict,
    ) -> CheckoutSession:
        notes = {key: str(value) for key, value in metadata.items()}
        notes["cancel_url"] = cancel_url

        payload = {
            "amount": line_item.total_amount,
            "currency": line_item.currency,
            "description": f"{line_item.name} x {line_item.quantity}",
            "reference_id": notes.get("booking_id"),
            "notes": notes,
            "callback_url": success_url,
            "callback_method": "get",
        }
        try:
            link = self.client.payment_link.create(payload)
        except (razorpay.errors.BadRequestError, *_UNREACHABLE_ERRORS) as exc:
            logger.exception("Razorpay payment link creation failed.")
            raise PaymentProviderError(str(exc)) from exc

        return self._to_session(link)

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            link = self.client.payment_link.fetch(session_id)
        except razorpay.errors.BadRequestError as exc:
            raise ValidationError(f"Unknown checkout session {session_id}") from exc
        except _UNREACHABLE_ERRORS as exc:
            logger.exception("Razorpay payment link fetch failed for %s.", session_id)
            raise PaymentProviderError(str(exc)) from exc

        return self._to_session(link)

    def cancel_session(self, session_id: str) -> None:
        """Close the link so it can no longer be paid."""
        try:
            self.client.payment_link.cancel(session_id)
        except (razorpay.errors.BadRequestError, *_UNREACHABLE_ERRORS) as exc:
            logger.exception("Razorpay payment link cancel failed for %s.", session_id)
            raise PaymentProviderError(str(exc)) from exc

    def verify_callback(self, params: dict) -> None:
        try:
            self.client.utility.verify_payment_link_signature(
                {
                    "payment_link_id": params.get("razorpay_payment_link_id"),
                    "payment_link_reference_id": params.get(
                        "razorpay_payment_link_reference_id"
                    ),
                    "payment_link_status": params.get("razorpay_payment_link_status"),
                    "razorpay_payment_id": params.get("razorpay_payment_id"),
                    "razorpay_signature": params.get("razorpay_signature"),
                }
            )
        except razorpay.errors.SignatureVerificationError as exc:
            raise UnauthenticatedError("Invalid payment callback signature") from exc

    def parse_webhook(self, body: bytes, signature: str | None) -> ProviderEvent:
        if not self.webhook_secret:
            raise PaymentProviderError("Razorpay webhook secret not configured.")
        if not signature:
            raise UnauthenticatedError("Missing webhook signature")

        try:
            self.client.utility.verify_webhook_signature(
                body.decode("utf-8"),
                signature,
                self.webhook_secret,
            )
        except razorpay.errors.SignatureVerificationError as exc:
            raise UnauthenticatedError("Invalid webhook signature") from exc

        event = json.loads(body)
        link = event.get("payload", {}).get("payment_link", {}).get("entity", {})
        return ProviderEvent(
            event_type=event.get("event", ""),
            session_id=link.get("id"),
            metadata=link.get("notes") or {},
        )

    @staticmethod
    def _to_session(link: dict) -> CheckoutSession:
        payments = link.get("payments") or []
        captured = [p for p in payments if p.get("status") == "captured"] or payments
        transaction_ref = captured[-1].get("payment_id") if captured else None

        return CheckoutSession(
            session_id=link["id"],
            url=link.get("short_url"),
            payment_status=link.get("status", ""),
            amount_total=int(link.get("amount_paid") or link.get("amount") or 0),
            currency=link.get("currency", CHECKOUT_CURRENCY),
            transaction_ref=transaction_ref,
            metadata=link.get("notes") or {},
        )


def razorpay_provider_from_env() -> RazorpayCheckoutProvider:
    key_id = os.getenv("RAZORPAY_KEY_ID")
    key_secret = os.getenv("RAZORPAY_KEY_SECRET")
    if not key_id or not key_secret:
        raise PaymentProviderError(
            "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
        )
    return RazorpayCheckoutProvider(
        key_id=key_id,
        key_secret=key_secret,
        webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET"),
    )
