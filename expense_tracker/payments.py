"""Payment gateway integration used for the premium upgrade."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe

from .config import Settings
from .errors import InvalidStateError, UpstreamError

logger = logging.getLogger(__name__)


class StripeGateway:
    """Creates payment orders on Stripe and confirms them before fulfilment.

    A Stripe PaymentIntent plays the role of the gateway order: its id is
    stored as ``Order.order_id`` and echoed back by the client on completion.
    The client's word is never trusted; the intent is read back from Stripe.
    """

    def __init__(self, secret_key: str = "", publishable_key: str = "") -> None:
        self._secret_key = secret_key
        self._publishable_key = publishable_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(
            secret_key=settings.stripe_secret_key,
            publishable_key=settings.stripe_publishable_key,
        )

    @property
    def key_id(self) -> str:
        if not self._publishable_key:
            raise UpstreamError("payment gateway not configured")
        return self._publishable_key

    def create_order(self, amount: int, currency: str, notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Create a gateway order for ``amount`` in the smallest currency unit."""
        if not self._secret_key:
            raise UpstreamError("payment gateway not configured")
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=notes or {},
                api_key=self._secret_key,
            )
        except stripe.StripeError as exc:
            logger.error("Failed to create payment order: %s", exc)
            raise UpstreamError("failed to create payment order") from exc
        return {
            "id": intent.id,
            "amount": intent.amount,
            "currency": intent.currency,
            "client_secret": intent.client_secret,
        }

    def retrieve_order(self, order_id: str) -> Dict[str, Any]:
        """Current gateway-side state of an order."""
        if not self._secret_key:
            raise UpstreamError("payment gateway not configured")
        try:
            intent = stripe.PaymentIntent.retrieve(order_id, api_key=self._secret_key)
        except stripe.StripeError as exc:
            logger.error("Failed to retrieve payment order %s: %s", order_id, exc)
            raise UpstreamError("failed to verify payment") from exc
        return {
            "id": intent.id,
            "status": intent.status,
            "amount": intent.amount,
            "currency": intent.currency,
            "latest_charge": getattr(intent, "latest_charge", None),
        }

    def confirm_payment(self, order_id: str, amount: int, currency: str) -> Dict[str, Any]:
        """Raise InvalidStateError unless the order was paid in full."""
        intent = self.retrieve_order(order_id)
        if intent["status"] != "succeeded":
            logger.warning("Order %s not paid, gateway status %s", order_id, intent["status"])
            raise InvalidStateError("Payment not completed")
        if intent["amount"] != amount or (intent["currency"] or "").lower() != currency.lower():
            logger.error(
                "Order %s paid %s %s, expected %s %s",
                order_id, intent["amount"], intent["currency"], amount, currency,
            )
            raise InvalidStateError("Payment does not match the order")
        return intent
