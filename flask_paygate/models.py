"""SQLAlchemy ORM models for flask-paygate users and payments.

Usage with Flask-SQLAlchemy 3.x::

    from flask import Flask
    from flask_sqlalchemy import SQLAlchemy
    from flask_paygate.models import Base

    db = SQLAlchemy(model_class=Base)

    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///paygate.db"
    db.init_app(app)

    with app.app_context():
        db.create_all()
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates
from werkzeug.security import check_password_hash, generate_password_hash


class Base(DeclarativeBase):
    """Shared declarative base for flask-paygate models."""


class User(Base):
    """A registered account.

    Passwords are never stored in clear text: :meth:`set_password` keeps a
    Werkzeug hash in :attr:`password_hash`.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    payments: Mapped[list["Payment"]] = relationship(back_populates="user")

    @validates("email")
    def normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, raw_password)

    def __repr__(self) -> str:
        return f"<User {self.email} admin={self.is_admin!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "is_admin": bool(self.is_admin),
        }


class PaymentMixin:
    """SQLAlchemy declarative mixin with all hosted-checkout payment fields.

    One row is written per Stripe Checkout Session or PayPal order, keyed by
    the provider-issued :attr:`session_id`.
    """

    session_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    redirect_url: Mapped[str] = mapped_column(String(2048))
    provider: Mapped[str] = mapped_column(String(64))
    amount: Mapped[Decimal] = mapped_column(Numeric(19, 4))
    currency: Mapped[str] = mapped_column(String(8))
    description: Mapped[str] = mapped_column(String(255), default="")
    state: Mapped[str] = mapped_column(String(32), default="pending")
    provider_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    metadata_json: Mapped[dict] = mapped_column(JSON, default=dict)
    request_payload: Mapped[dict] = mapped_column(JSON, default=dict)
    response_payload: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    #: Valid lifecycle state values accepted by the model.
    VALID_STATES: frozenset[str] = frozenset(
        ("pending", "processing", "succeeded", "failed", "cancelled", "refunded", "unknown")
    )

    @validates("state")
    def validate_state(self, key: str, value: str) -> str:
        """Reject unknown state values at the SQLAlchemy attribute level.

        Raises:
            ValueError: If *value* is not one of :attr:`VALID_STATES`.
        """
        if value not in self.VALID_STATES:
            raise ValueError(
                f"Invalid payment state {value!r}. "
                f"Allowed values: {', '.join(sorted(self.VALID_STATES))}."
            )
        return value

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.session_id} state={self.state!r}>"

    def to_dict(self) -> dict:
        """Return a plain-dict representation of the record."""
        return {
            "session_id": self.session_id,
            "redirect_url": self.redirect_url,
            "provider": self.provider,
            "amount": f"{Decimal(self.amount):.2f}",
            "currency": self.currency,
            "description": self.description or "",
            "state": self.state,
            "provider_reference": self.provider_reference,
            "user_id": getattr(self, "user_id", None),
            "metadata": self.metadata_json or {},
            "request_payload": self.request_payload or {},
            "response_payload": self.response_payload or {},
        }


class Payment(PaymentMixin, Base):
    """Payment record backed by the ``payments`` table.

    Attributes:
        id: Auto-incrementing primary key.
        session_id: Stripe Checkout Session id or PayPal order id (unique).
        redirect_url: Hosted page the customer was sent to.
        provider: Gateway key (``"stripe"`` or ``"paypal"``).
        amount: Payment amount as a fixed-precision decimal.
        currency: ISO-4217 currency code.
        description: Free-text description entered on the checkout form.
        state: Payment lifecycle state (``"pending"``, ``"succeeded"``, …).
        provider_reference: Stripe payment intent id or PayPal capture id.
        user_id: Owner of the payment, when the customer was logged in.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )

    user: Mapped[Optional[User]] = relationship(back_populates="payments")
