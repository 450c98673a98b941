"""Exceptions raised by flask-paygate."""

from __future__ import annotations


class PaygateError(Exception):
    """Base class for all flask-paygate errors."""


class GatewayError(PaygateError):
    """A payment provider rejected a request or could not be reached.

    Args:
        provider: Key of the gateway that failed (``"stripe"``, ``"paypal"``).
        message: Human readable message, usually the provider's own.
    """

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class GatewayNotConfigured(GatewayError):
    """The gateway is missing credentials in ``app.config``."""

    def __init__(self, provider: str) -> None:
        super().__init__(provider, f"{provider} is not configured")
