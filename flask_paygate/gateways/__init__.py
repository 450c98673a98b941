"""Hosted-checkout gateways for Stripe and PayPal."""

from __future__ import annotations

from flask_paygate.gateways.base import CheckoutSession, Gateway, PaymentState, PaymentStatus
from flask_paygate.gateways.paypal import PayPalGateway
from flask_paygate.gateways.stripe import StripeGateway

__all__ = [
    "CheckoutSession",
    "Gateway",
    "PayPalGateway",
    "PaymentState",
    "PaymentStatus",
    "StripeGateway",
    "gateways_from_config",
]


def gateways_from_config(config) -> list[Gateway]:
    """Build the Stripe and PayPal gateways from a Flask ``app.config``."""
    return [
        StripeGateway(
            config["STRIPE_SECRET_KEY"],
            currency=config["STRIPE_CURRENCY"],
        ),
        PayPalGateway(
            config["PAYPAL_CLIENT_ID"],
            config["PAYPAL_CLIENT_SECRET"],
            mode=config["PAYPAL_MODE"],
            currency=config["PAYPAL_CURRENCY"],
            timeout=config["PAYGATE_HTTP_TIMEOUT"],
        ),
    ]
