"""Provider-neutral types shared by the Stripe and PayPal gateways."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from flask_paygate.errors import GatewayNotConfigured


class PaymentState(str, enum.Enum):
    """Lifecycle state of a hosted-checkout payment."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"

    @property
    def is_final(self) -> bool:
        return self in _FINAL_STATES

    def accepts(self, reported: "PaymentState") -> bool:
        """Whether a provider report of *reported* may replace this stored state.

        Final states only move from ``succeeded`` to ``refunded``.
        """
        if reported is self or not self.is_final:
            return True
        return self is PaymentState.SUCCEEDED and reported is PaymentState.REFUNDED


_FINAL_STATES = frozenset(
    (PaymentState.SUCCEEDED, PaymentState.FAILED, PaymentState.CANCELLED, PaymentState.REFUNDED)
)


@dataclass
class CheckoutSession:
    """A hosted checkout created at the provider.

    ``redirect_url`` is the provider page the customer must be sent to.
    ``raw`` keeps the provider response for auditing.
    """

    session_id: str
    redirect_url: str
    provider: str
    amount: Decimal
    currency: str
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentStatus:
    """Live status of a checkout as reported by the provider."""

    payment_id: str
    state: PaymentState
    provider: str
    reference: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_final(self) -> bool:
        return self.state.is_final

    @property
    def is_success(self) -> bool:
        return self.state is PaymentState.SUCCEEDED


class Gateway:
    """Base class for hosted-checkout gateways.

    Subclasses set :attr:`key` and implement :meth:`create_checkout` and
    :meth:`get_status`. :meth:`confirm` is called when the customer returns
    from the hosted page; gateways that need an explicit capture override it.
    """

    key: str = ""

    def __init__(self, *, currency: str) -> None:
        self.currency = currency

    @property
    def is_configured(self) -> bool:
        return True

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise GatewayNotConfigured(self.key)

    def create_checkout(
        self,
        *,
        amount: Decimal,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, Any] | None = None,
    ) -> CheckoutSession:
        raise NotImplementedError

    def get_status(self, session_id: str) -> PaymentStatus:
        raise NotImplementedError

    def confirm(self, session_id: str) -> PaymentStatus:
        return self.get_status(session_id)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} key={self.key!r} currency={self.currency!r}>"
