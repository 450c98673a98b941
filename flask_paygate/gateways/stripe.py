"""Stripe Checkout Sessions gateway."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import stripe

from flask_paygate.errors import GatewayError
from flask_paygate.gateways.base import CheckoutSession, Gateway, PaymentState, PaymentStatus

logger = logging.getLogger(__name__)

#: Placeholder Stripe substitutes with the real session id on redirect.
SESSION_ID_TEMPLATE = "{CHECKOUT_SESSION_ID}"

#: Webhook event types and the state they put a checkout session in.
WEBHOOK_EVENT_STATES: dict[str, PaymentState] = {
    "checkout.session.completed": PaymentState.SUCCEEDED,
    "checkout.session.async_payment_succeeded": PaymentState.SUCCEEDED,
    "checkout.session.async_payment_failed": PaymentState.FAILED,
    "checkout.session.expired": PaymentState.CANCELLED,
}


def _as_dict(obj: Any) -> dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return dict(obj)
    return {}


def to_minor_units(amount: Decimal) -> int:
    """Return *amount* in cents, truncating any fraction of a cent."""
    return int(amount * 100)


def map_session_state(session: Any) -> PaymentState:
    """Map a Checkout Session's ``status``/``payment_status`` to a :class:`PaymentState`."""
    payment_status = getattr(session, "payment_status", None)
    status = getattr(session, "status", None)
    if payment_status in ("paid", "no_payment_required"):
        return PaymentState.SUCCEEDED
    if status == "expired":
        return PaymentState.CANCELLED
    if status == "complete":
        # Completed but unpaid: an asynchronous payment method is still settling.
        return PaymentState.PROCESSING
    if status == "open":
        return PaymentState.PENDING
    return PaymentState.UNKNOWN


class StripeGateway(Gateway):
    """Create and inspect Stripe Checkout Sessions.

    Args:
        secret_key: Stripe secret API key (``sk_...``). Passed per request so
            several apps in one process never share ``stripe.api_key``.
        currency: Three-letter currency code used for every line item.
    """

    key = "stripe"

    def __init__(self, secret_key: str | None, *, currency: str = "usd") -> None:
        super().__init__(currency=currency.lower())
        self._secret_key = secret_key

    @property
    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def create_checkout(
        self,
        *,
        amount: Decimal,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, Any] | None = None,
    ) -> CheckoutSession:
        self._require_configured()
        metadata = dict(metadata or {})
        params = {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": f"Payment for {description}"},
                        "unit_amount": to_minor_units(amount),
                    },
                    "quantity": 1,
                }
            ],
            "mode": "payment",
            "success_url": f"{success_url}?session_id={SESSION_ID_TEMPLATE}",
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        try:
            session = stripe.checkout.Session.create(api_key=self._secret_key, **params)
        except stripe.StripeError as exc:
            logger.warning("Stripe checkout session creation failed: %s", exc)
            raise GatewayError(self.key, exc.user_message or str(exc)) from exc

        logger.info("Stripe checkout session created: session_id=%s", session.id)
        return CheckoutSession(
            session_id=session.id,
            redirect_url=session.url,
            provider=self.key,
            amount=amount,
            currency=self.currency,
            metadata=metadata,
            raw=_as_dict(session),
        )

    def get_status(self, session_id: str) -> PaymentStatus:
        self._require_configured()
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self._secret_key)
        except stripe.StripeError as exc:
            logger.warning("Stripe session %s could not be retrieved: %s", session_id, exc)
            raise GatewayError(self.key, exc.user_message or str(exc)) from exc

        payment_intent = getattr(session, "payment_intent", None)
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = payment_intent.id
        return PaymentStatus(
            payment_id=session_id,
            state=map_session_state(session),
            provider=self.key,
            reference=payment_intent,
            raw=_as_dict(session),
        )

    def construct_event(self, payload: bytes, signature: str, secret: str):
        """Verify and parse a webhook request body.

        Raises:
            GatewayError: The payload is malformed or the signature does not
                match *secret*.
        """
        try:
            return stripe.Webhook.construct_event(payload, signature, secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("Rejected Stripe webhook: %s", exc)
            raise GatewayError(self.key, "invalid webhook payload or signature") from exc
