"""PayPal Orders v2 gateway.

Talks to the PayPal REST API with :mod:`requests`. The customer approves the
order on PayPal's hosted page and is sent back to ``return_url`` with the
order id in the ``token`` query parameter; the order is then captured
server-side by :meth:`PayPalGateway.confirm`.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any

import requests

from flask_paygate.errors import GatewayError
from flask_paygate.gateways.base import CheckoutSession, Gateway, PaymentState, PaymentStatus

logger = logging.getLogger(__name__)

API_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

#: Seconds shaved off ``expires_in`` so a token is never used right at expiry.
TOKEN_EXPIRY_MARGIN = 60

_ORDER_STATES = {
    "CREATED": PaymentState.PENDING,
    "SAVED": PaymentState.PENDING,
    "PAYER_ACTION_REQUIRED": PaymentState.PENDING,
    "APPROVED": PaymentState.PROCESSING,
    "COMPLETED": PaymentState.SUCCEEDED,
    "VOIDED": PaymentState.CANCELLED,
}

_CAPTURE_STATES = {
    "COMPLETED": PaymentState.SUCCEEDED,
    "PENDING": PaymentState.PROCESSING,
    "DECLINED": PaymentState.FAILED,
    "FAILED": PaymentState.FAILED,
    "REFUNDED": PaymentState.REFUNDED,
    "PARTIALLY_REFUNDED": PaymentState.REFUNDED,
}


def _first_capture(order: dict[str, Any]) -> dict[str, Any] | None:
    for unit in order.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            return captures[0]
    return None


def map_order_state(order: dict[str, Any]) -> tuple[PaymentState, str | None]:
    """Return the payment state and capture id for a PayPal order body."""
    capture = _first_capture(order)
    if capture is not None:
        state = _CAPTURE_STATES.get(capture.get("status", ""), PaymentState.UNKNOWN)
        return state, capture.get("id")
    return _ORDER_STATES.get(order.get("status", ""), PaymentState.UNKNOWN), None


def _error_issue(response: requests.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    details = body.get("details") or []
    if details:
        return details[0].get("issue")
    return None


class PayPalGateway(Gateway):
    """Create, inspect and capture PayPal orders.

    Args:
        client_id: REST app client id.
        client_secret: REST app secret.
        mode: ``"sandbox"`` or ``"live"``.
        currency: Three-letter currency code for every order.
        timeout: Seconds to wait for each HTTP call.
        session: Optional :class:`requests.Session` to send requests with.
    """

    key = "paypal"

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        *,
        mode: str = "sandbox",
        currency: str = "USD",
        timeout: float = 10,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(currency=currency.upper())
        if mode not in API_BASE_URLS:
            raise ValueError(f"Unknown PayPal mode {mode!r}; use 'sandbox' or 'live'.")
        self._client_id = client_id
        self._client_secret = client_secret
        self.mode = mode
        self.base_url = API_BASE_URLS[mode]
        self.timeout = timeout
        self._http = session or requests.Session()
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        try:
            response = self._http.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(self.key, f"could not reach PayPal: {exc}") from exc
        if not response.ok:
            logger.warning("PayPal authentication failed with HTTP %s", response.status_code)
            raise GatewayError(self.key, "authentication with PayPal failed")
        try:
            body = response.json()
            token = body["access_token"]
            expires_in = int(body.get("expires_in", 0))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("PayPal returned an unreadable token response: %r", exc)
            raise GatewayError(self.key, "authentication with PayPal failed") from exc
        self._token = token
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        return self._token

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        try:
            return self._http.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise GatewayError(self.key, f"could not reach PayPal: {exc}") from exc

    def _raise_for_status(self, response: requests.Response, action: str) -> None:
        if response.ok:
            return
        issue = _error_issue(response)
        logger.warning("PayPal %s failed: HTTP %s %s", action, response.status_code, issue)
        message = f"PayPal {action} failed"
        if issue:
            message = f"{message} ({issue})"
        raise GatewayError(self.key, message)

    # ------------------------------------------------------------------
    # Gateway API
    # ------------------------------------------------------------------

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
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {"currency_code": self.currency, "value": f"{amount:.2f}"},
                    "description": f"Payment for {description}"[:127],
                }
            ],
            "application_context": {
                "return_url": success_url,
                "cancel_url": cancel_url,
                "user_action": "PAY_NOW",
            },
        }
        if "reference" in metadata:
            payload["purchase_units"][0]["custom_id"] = str(metadata["reference"])[:127]

        response = self._request("POST", "/v2/checkout/orders", json=payload)
        self._raise_for_status(response, "order creation")
        order = response.json()

        approve_url = next(
            (
                link["href"]
                for link in order.get("links", [])
                if link.get("rel") in ("approve", "payer-action")
            ),
            None,
        )
        if approve_url is None:
            raise GatewayError(self.key, "PayPal did not return an approval link")

        logger.info("PayPal order created: order_id=%s", order["id"])
        return CheckoutSession(
            session_id=order["id"],
            redirect_url=approve_url,
            provider=self.key,
            amount=amount,
            currency=self.currency,
            metadata=metadata,
            raw=order,
        )

    def get_status(self, session_id: str) -> PaymentStatus:
        self._require_configured()
        response = self._request("GET", f"/v2/checkout/orders/{session_id}")
        self._raise_for_status(response, "order lookup")
        order = response.json()
        state, capture_id = map_order_state(order)
        return PaymentStatus(
            payment_id=session_id,
            state=state,
            provider=self.key,
            reference=capture_id,
            raw=order,
        )

    def confirm(self, session_id: str) -> PaymentStatus:
        """Capture an approved order.

        An order that was already captured (e.g. the customer reloaded the
        return page) is reported with its current status instead of failing.
        """
        self._require_configured()
        response = self._request("POST", f"/v2/checkout/orders/{session_id}/capture", json={})
        if response.status_code == 422 and _error_issue(response) == "ORDER_ALREADY_CAPTURED":
            return self.get_status(session_id)
        self._raise_for_status(response, "capture")
        order = response.json()
        state, capture_id = map_order_state(order)
        logger.info("PayPal order %s captured: state=%s", session_id, state.value)
        return PaymentStatus(
            payment_id=session_id,
            state=state,
            provider=self.key,
            reference=capture_id,
            raw=order,
        )
