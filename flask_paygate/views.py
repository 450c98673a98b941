"""Blueprints for the site pages, authentication and the two checkout flows."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import (
    Blueprint,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from werkzeug.datastructures import MultiDict

from flask_paygate.auth import admin_required, current_user, login_required, login_user, logout_user
from flask_paygate.errors import GatewayError
from flask_paygate.forms import CheckoutForm, LoginForm, RegistrationForm, form_errors
from flask_paygate.gateways import PaymentState
from flask_paygate.gateways.stripe import WEBHOOK_EVENT_STATES

if TYPE_CHECKING:
    from flask_paygate import Paygate

logger = logging.getLogger(__name__)


def _form_data() -> MultiDict:
    """Return posted form fields, or a JSON object body as string form fields."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return MultiDict({k: "" if v is None else str(v) for k, v in data.items()})
    return request.form


def _payment_error(message: str):
    flash(message, "error")
    return redirect(url_for("main.payment_error"))


# ----------------------------------------------------------------------
# Site pages
# ----------------------------------------------------------------------


def create_main_blueprint(ext: "Paygate") -> Blueprint:
    bp = Blueprint("main", __name__, template_folder="templates")

    @bp.route("/")
    def welcome():
        return render_template("paygate/welcome.html", gateways=ext.list_gateways())

    @bp.route("/dashboard")
    @login_required
    def dashboard():
        user = current_user()
        return render_template(
            "paygate/dashboard.html",
            user=user,
            payments=ext.all_sessions(user=user),
        )

    @bp.route("/payment/error")
    def payment_error():
        """Landing page for failed or unverifiable payments; shows flashed errors."""
        return render_template("paygate/payment_error.html")

    @bp.route("/payments/<session_id>/sync", methods=["POST"])
    @admin_required
    def sync_payment(session_id: str):
        """Re-read a payment's status from its provider (admins only)."""
        if ext.get_session(session_id) is None:
            return jsonify({"error": f"Unknown payment: {session_id}"}), 404
        stored = ext.sync_from_provider(session_id)
        if stored is None:
            return jsonify({"error": "provider lookup failed"}), 502
        return jsonify(stored)

    return bp


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------


def create_auth_blueprint(ext: "Paygate") -> Blueprint:
    bp = Blueprint("auth", __name__, template_folder="templates")

    @bp.route("/login", methods=["GET", "POST"])
    def login():
        form = LoginForm(request.form)
        if request.method == "GET":
            return render_template("paygate/login.html", form=form, errors=[])

        if not form.validate():
            return render_template("paygate/login.html", form=form, errors=form_errors(form))

        user = ext.authenticate(form.email.data, form.password.data)
        if user is None:
            return render_template(
                "paygate/login.html",
                form=form,
                errors=["Invalid email or password"],
            )

        login_user(user)
        return render_template(
            "paygate/dashboard.html",
            user=user,
            payments=ext.all_sessions(user=user),
        )

    @bp.route("/logout", methods=["POST"])
    def logout():
        logout_user()
        return redirect(url_for("auth.login"))

    @bp.route("/register", methods=["GET", "POST"])
    def register():
        form = RegistrationForm(request.form)
        if request.method == "GET":
            return render_template("paygate/register.html", form=form, errors=[])

        valid = form.validate()
        if valid and ext.find_user(form.email.data) is not None:
            form.email.errors.append("The email has already been taken.")
            valid = False
        if not valid:
            return render_template("paygate/register.html", form=form, errors=form_errors(form))

        user = ext.create_user(form.name.data.strip(), form.email.data, form.password.data)
        login_user(user)
        flash("Registration successful!", "success")
        return redirect(url_for("main.dashboard"))

    return bp


# ----------------------------------------------------------------------
# Checkout
# ----------------------------------------------------------------------


def _start_checkout(ext: "Paygate", provider: str):
    """Validate the checkout form, create a hosted session and redirect to it.

    Accepts form fields **or** a JSON body with ``amount`` and
    ``description``. JSON clients receive ``session_id`` and
    ``redirect_url`` instead of a redirect.
    """
    gateway = ext.get_gateway(provider)
    form = CheckoutForm(_form_data())
    if not form.validate():
        if request.is_json:
            return jsonify({"errors": form.errors}), 400
        return render_template(
            f"paygate/{provider}/form.html",
            form=form,
            errors=form_errors(form),
            currency=gateway.currency,
        )

    user = current_user()
    description = form.description.data.strip()
    metadata = {"user_id": str(user.id)} if user is not None else {}
    try:
        session = gateway.create_checkout(
            amount=form.amount.data,
            description=description,
            success_url=url_for(f"{provider}.success", _external=True),
            cancel_url=url_for(f"{provider}.cancel", _external=True),
            metadata=metadata,
        )
    except GatewayError as exc:
        if request.is_json:
            return jsonify({"error": exc.message}), 502
        return _payment_error(exc.message)

    ext.save_session(
        session,
        user=user,
        description=description,
        request_payload={
            "amount": f"{form.amount.data:.2f}",
            "description": description,
            "provider": provider,
        },
    )

    if request.is_json:
        return jsonify(
            {
                "session_id": session.session_id,
                "redirect_url": session.redirect_url,
            }
        )
    return redirect(session.redirect_url)


def _finish_checkout(ext: "Paygate", provider: str, session_id: str | None, missing_message: str):
    """Verify a returning customer's payment with the provider and show the result."""
    if not session_id:
        return _payment_error(missing_message)

    stored = ext.get_session(session_id)
    if stored is None or stored["provider"] != provider:
        logger.warning("%s return for unknown payment %s", provider, session_id)
        return _payment_error("The payment could not be found.")

    gateway = ext.get_gateway(provider)
    try:
        status = gateway.confirm(session_id)
    except GatewayError as exc:
        return _payment_error(exc.message)

    ext.update_state(session_id, status.state.value, reference=status.reference, from_provider=True)
    payment = ext.get_session(session_id)
    if payment["state"] not in (PaymentState.SUCCEEDED.value, PaymentState.PROCESSING.value):
        logger.warning("%s payment %s returned in state %s", provider, session_id, payment["state"])
        return _payment_error("The payment was not completed.")

    return render_template(
        f"paygate/{provider}/success.html",
        status=status,
        payment=payment,
    )


def _cancel_checkout(ext: "Paygate", provider: str, session_id: str | None):
    if session_id:
        stored = ext.get_session(session_id)
        if stored is not None and stored["state"] == "pending":
            ext.cancel_session(session_id)
    return render_template(f"paygate/{provider}/cancel.html", session_id=session_id)


def create_stripe_blueprint(ext: "Paygate") -> Blueprint:
    bp = Blueprint("stripe", __name__, template_folder="templates")

    @bp.route("/")
    def index():
        return render_template(
            "paygate/stripe/form.html",
            form=CheckoutForm(),
            errors=[],
            currency=ext.get_gateway("stripe").currency,
        )

    @bp.route("/checkout", methods=["POST"])
    def checkout():
        return _start_checkout(ext, "stripe")

    @bp.route("/success")
    def success():
        """Stripe appends ``session_id`` to the success URL."""
        return _finish_checkout(
            ext, "stripe", request.args.get("session_id"), "No session ID provided."
        )

    @bp.route("/cancel")
    def cancel():
        return _cancel_checkout(ext, "stripe", request.args.get("session_id"))

    @bp.route("/webhook", methods=["POST"])
    @ext.csrf.exempt
    def webhook():
        """Receive Stripe events and update the matching payment.

        Requires ``STRIPE_WEBHOOK_SECRET``; every request is verified against
        the ``Stripe-Signature`` header.
        """
        secret: str | None = current_app.config.get("STRIPE_WEBHOOK_SECRET")
        if not secret:
            return jsonify({"error": "webhook secret not configured"}), 400

        payload: bytes = request.get_data()
        signature = request.headers.get("Stripe-Signature", "")
        try:
            event = ext.get_gateway("stripe").construct_event(payload, signature, secret)
        except GatewayError:
            return jsonify({"error": "invalid signature"}), 400

        event_type = event["type"]
        state = WEBHOOK_EVENT_STATES.get(event_type)
        if state is None:
            return jsonify({"received": True, "event_id": event["id"], "event_type": event_type})

        obj = event["data"]["object"]
        if event_type == "checkout.session.completed" and getattr(obj, "payment_status", None) == "unpaid":
            state = PaymentState.PROCESSING
        reference = getattr(obj, "payment_intent", None)
        if reference is not None and not isinstance(reference, str):
            reference = reference["id"]
        # Stripe does not order events; a late report cannot reopen a final payment.
        updated = ext.update_state(obj["id"], state.value, reference=reference, from_provider=True)

        return jsonify(
            {
                "received": True,
                "event_id": event["id"],
                "event_type": event_type,
                "session_id": obj["id"],
                "state": state.value,
                "updated": updated,
            }
        )

    return bp


def create_paypal_blueprint(ext: "Paygate") -> Blueprint:
    bp = Blueprint("paypal", __name__, template_folder="templates")

    @bp.route("/")
    def index():
        return render_template(
            "paygate/paypal/form.html",
            form=CheckoutForm(),
            errors=[],
            currency=ext.get_gateway("paypal").currency,
        )

    @bp.route("/checkout", methods=["POST"])
    def checkout():
        return _start_checkout(ext, "paypal")

    @bp.route("/success")
    def success():
        """PayPal returns the approved order id in ``token``."""
        return _finish_checkout(
            ext, "paypal", request.args.get("token"), "No order ID provided."
        )

    @bp.route("/cancel")
    def cancel():
        return _cancel_checkout(ext, "paypal", request.args.get("token"))

    return bp
