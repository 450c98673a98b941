"""flask_paygate – session auth plus Stripe and PayPal hosted checkout for Flask."""

from __future__ import annotations

import logging
from typing import Any

from flask_wtf.csrf import CSRFProtect

from flask_paygate.auth import current_user
from flask_paygate.gateways import CheckoutSession, Gateway, PaymentState, gateways_from_config
from flask_paygate.models import Payment, User
from flask_paygate.version import __version__

__all__ = ["Paygate", "__version__"]

logger = logging.getLogger(__name__)


class Paygate:
    """Flask extension wiring user accounts and the payment gateways into an app.

    Usage – application factory pattern::

        from flask import Flask
        from flask_sqlalchemy import SQLAlchemy
        from flask_paygate import Paygate
        from flask_paygate.models import Base

        db = SQLAlchemy(model_class=Base)
        paygate = Paygate(db=db)

        def create_app():
            app = Flask(__name__)
            app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///paygate.db"
            db.init_app(app)
            paygate.init_app(app)
            return app

    Usage – with the Flask-Admin area::

        from flask_admin import Admin
        from flask_paygate.contrib.sqla import PaygateAdminIndexView

        admin = Admin(app, name="Paygate", index_view=PaygateAdminIndexView())
        Paygate(app, db=db, admin=admin)

    Configuration keys (set on ``app.config``):

    ``STRIPE_SECRET_KEY`` / ``STRIPE_CURRENCY`` / ``STRIPE_WEBHOOK_SECRET``
        Stripe credentials, line-item currency (default ``"usd"``) and the
        webhook signing secret. The webhook answers 400 while no secret is set.
    ``PAYPAL_CLIENT_ID`` / ``PAYPAL_CLIENT_SECRET`` / ``PAYPAL_MODE`` / ``PAYPAL_CURRENCY``
        PayPal REST credentials, ``"sandbox"`` (default) or ``"live"``, and
        the order currency (default ``"USD"``).
    ``PAYGATE_HTTP_TIMEOUT``
        Timeout in seconds for PayPal HTTP calls (default ``10``).
    ``PAYGATE_MIN_PASSWORD_LENGTH``
        Minimum password length on login and registration (default ``6``).
    ``WTF_CSRF_ENABLED``
        Flask-WTF CSRF protection for every form and JSON POST (default
        ``True``). Clients send the token as ``csrf_token`` or ``X-CSRFToken``.
    """

    def __init__(self, app=None, *, db, gateways=None, admin=None) -> None:
        self._db = db
        self._explicit_gateways: list[Gateway] | None = (
            list(gateways) if gateways is not None else None
        )
        self._admin = admin
        self.csrf = CSRFProtect()
        # Gateways keyed by Gateway.key
        self._gateways: dict[str, Gateway] = {}

        if app is not None:
            self.init_app(app)

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def init_app(self, app) -> None:
        """Initialise the extension against *app*."""
        app.config.setdefault("STRIPE_SECRET_KEY", None)
        app.config.setdefault("STRIPE_CURRENCY", "usd")
        app.config.setdefault("STRIPE_WEBHOOK_SECRET", None)
        app.config.setdefault("PAYPAL_CLIENT_ID", None)
        app.config.setdefault("PAYPAL_CLIENT_SECRET", None)
        app.config.setdefault("PAYPAL_MODE", "sandbox")
        app.config.setdefault("PAYPAL_CURRENCY", "USD")
        app.config.setdefault("PAYGATE_HTTP_TIMEOUT", 10)
        app.config.setdefault("PAYGATE_MIN_PASSWORD_LENGTH", 6)

        # Every POST needs a csrf_token field or X-CSRFToken header, except
        # the Stripe webhook. WTF_CSRF_ENABLED=False turns the check off.
        self.csrf.init_app(app)

        if self._explicit_gateways is not None:
            gateways = self._explicit_gateways
        else:
            gateways = gateways_from_config(app.config)
        self._gateways = {g.key: g for g in gateways}
        for gateway in gateways:
            if not gateway.is_configured:
                logger.warning("Payment gateway %r has no credentials configured", gateway.key)

        from flask_paygate.cli import paygate_cli
        from flask_paygate.views import (
            create_auth_blueprint,
            create_main_blueprint,
            create_paypal_blueprint,
            create_stripe_blueprint,
        )

        app.register_blueprint(create_main_blueprint(self))
        app.register_blueprint(create_auth_blueprint(self))
        if "stripe" in self._gateways:
            app.register_blueprint(create_stripe_blueprint(self), url_prefix="/stripe")
        if "paypal" in self._gateways:
            app.register_blueprint(create_paypal_blueprint(self), url_prefix="/paypal")
        app.cli.add_command(paygate_cli)

        @app.context_processor
        def inject_current_user():
            return {"current_user": current_user()}

        if self._admin is not None:
            from flask_paygate.contrib.sqla import PaymentModelView, UserModelView

            self._admin.add_view(
                PaymentModelView(Payment, self._db.session, ext=self, name="Payments", endpoint="payments")
            )
            self._admin.add_view(
                UserModelView(User, self._db.session, name="Users", endpoint="users")
            )

        app.extensions["paygate"] = self

    # ------------------------------------------------------------------
    # Gateways
    # ------------------------------------------------------------------

    @property
    def db(self):
        return self._db

    def list_gateways(self) -> list[str]:
        """Return the registered gateway keys."""
        return list(self._gateways.keys())

    def get_gateway(self, key: str) -> Gateway:
        """Return the gateway registered under *key*.

        Raises:
            KeyError: If *key* is not registered.
        """
        if key not in self._gateways:
            raise KeyError(f"Unknown provider: {key!r}")
        return self._gateways[key]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id) -> User | None:
        return self._db.session.get(User, user_id)

    def find_user(self, email: str) -> User | None:
        return (
            self._db.session.query(User)
            .filter_by(email=email.strip().lower())
            .first()
        )

    def create_user(self, name: str, email: str, password: str, *, is_admin: bool = False) -> User:
        """Create and commit a new user with a hashed password."""
        user = User(name=name, email=email, is_admin=is_admin)
        user.set_password(password)
        self._db.session.add(user)
        self._db.session.commit()
        logger.info("Registered user %s (admin=%s)", user.id, is_admin)
        return user

    def authenticate(self, email: str, password: str) -> User | None:
        """Return the user owning *email* when *password* matches, else ``None``."""
        user = self.find_user(email)
        if user is None or not user.check_password(password):
            logger.info("Failed login attempt for %s", email)
            return None
        return user

    # ------------------------------------------------------------------
    # Payment store helpers
    # ------------------------------------------------------------------

    def _find_payment(self, session_id: str) -> Payment | None:
        return (
            self._db.session.query(Payment)
            .filter_by(session_id=session_id)
            .first()
        )

    def save_session(
        self,
        session: CheckoutSession,
        *,
        user: User | None = None,
        description: str = "",
        request_payload: dict | None = None,
    ) -> Payment:
        """Persist a freshly created :class:`~flask_paygate.gateways.CheckoutSession`.

        Args:
            session: The checkout session returned by a gateway.
            user: Logged-in customer the payment belongs to, if any.
            description: Description entered on the checkout form.
            request_payload: The form data that led to the checkout.
        """
        response_raw = session.raw if isinstance(session.raw, dict) else {}
        record = Payment(
            session_id=session.session_id,
            redirect_url=session.redirect_url,
            provider=session.provider,
            amount=session.amount,
            currency=session.currency,
            description=description,
            state="pending",
            metadata_json=session.metadata or {},
            request_payload=request_payload or {},
            response_payload=response_raw,
            user=user,
        )
        self._db.session.add(record)
        self._db.session.commit()
        return record

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        """Return stored data for *session_id*, or ``None``."""
        record = self._find_payment(session_id)
        return record.to_dict() if record is not None else None

    def update_state(
        self,
        session_id: str,
        state: str,
        *,
        reference: str | None = None,
        from_provider: bool = False,
    ) -> bool:
        """Update the stored state for *session_id*. Returns ``True`` on success.

        With *from_provider* the change is a status reported by the gateway
        (return page, webhook, sync). Such reports never reopen a payment
        that is already final, nor override a refund or cancellation.
        """
        record = self._find_payment(session_id)
        if record is None:
            return False
        if from_provider and not PaymentState(record.state).accepts(PaymentState(state)):
            logger.info(
                "Ignoring %s report for payment %s, already %s", state, session_id, record.state
            )
            return False
        record.state = state
        if reference:
            record.provider_reference = reference
        self._db.session.commit()
        logger.info("Payment %s is now %s", session_id, state)
        return True

    def refund_session(self, session_id: str) -> bool:
        """Mark *session_id* as refunded. Returns ``True`` on success."""
        return self.update_state(session_id, "refunded")

    def cancel_session(self, session_id: str) -> bool:
        """Mark *session_id* as cancelled. Returns ``True`` on success."""
        return self.update_state(session_id, "cancelled")

    def sync_from_provider(self, session_id: str) -> dict[str, Any] | None:
        """Fetch live status from the provider and update the stored state.

        Returns the updated stored record, or ``None`` if *session_id* is not
        found or the provider call fails.
        """
        from flask_paygate.errors import GatewayError

        record = self._find_payment(session_id)
        if record is None:
            return None
        try:
            status = self.get_gateway(record.provider).get_status(session_id)
        except (KeyError, GatewayError) as exc:
            logger.warning("Could not sync payment %s: %s", session_id, exc)
            return None
        self.update_state(
            session_id, status.state.value, reference=status.reference, from_provider=True
        )
        return record.to_dict()

    def all_sessions(self, *, provider: str | None = None, user: User | None = None) -> list[dict[str, Any]]:
        """Return stored payments, newest first, optionally filtered."""
        query = self._db.session.query(Payment)
        if provider is not None:
            query = query.filter_by(provider=provider)
        if user is not None:
            query = query.filter_by(user_id=user.id)
        return [r.to_dict() for r in query.order_by(Payment.id.desc()).all()]
