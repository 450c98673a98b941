"""Shared pytest fixtures for flask-paygate tests."""

from types import SimpleNamespace

import pytest
import stripe
from flask import Flask
from flask_admin import Admin
from flask_sqlalchemy import SQLAlchemy

from flask_paygate import Paygate
from flask_paygate.contrib.sqla import PaygateAdminIndexView
from flask_paygate.gateways import PayPalGateway, StripeGateway
from flask_paygate.models import Base


# ---------------------------------------------------------------------------
# Stripe SDK stand-in
# ---------------------------------------------------------------------------


class FakeStripeSession(SimpleNamespace):
    def to_dict(self):
        return dict(vars(self))


class FakeStripe:
    """Replaces ``stripe.checkout.Session.create`` / ``retrieve``."""

    def __init__(self):
        self.sessions = {}
        self.created = []
        self.api_keys = []
        self.error = None

    def create(self, api_key=None, **params):
        self.api_keys.append(api_key)
        if self.error is not None:
            raise self.error
        session_id = f"cs_test_{len(self.sessions) + 1:04d}"
        session = FakeStripeSession(
            id=session_id,
            object="checkout.session",
            url=f"https://checkout.stripe.com/c/pay/{session_id}",
            status="open",
            payment_status="unpaid",
            payment_intent=None,
            mode=params["mode"],
        )
        self.created.append(params)
        self.sessions[session_id] = session
        return session

    def retrieve(self, session_id, api_key=None):
        self.api_keys.append(api_key)
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(
                f"No such checkout.session: '{session_id}'", "id"
            )
        return self.sessions[session_id]

    def pay(self, session_id, payment_intent="pi_3MtwBwLkdIwHu7ix28a3tqPa"):
        session = self.sessions[session_id]
        session.status = "complete"
        session.payment_status = "paid"
        session.payment_intent = payment_intent

    def expire(self, session_id):
        self.sessions[session_id].status = "expired"


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe.checkout.Session, "create", fake.create)
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake.retrieve)
    return fake


# ---------------------------------------------------------------------------
# PayPal REST stand-in
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("response has no JSON body")
        return self._body


def captured_order(order_id, capture_status="COMPLETED"):
    return {
        "id": order_id,
        "status": "COMPLETED",
        "purchase_units": [
            {
                "reference_id": "default",
                "payments": {
                    "captures": [{"id": "3C679366HH908993F", "status": capture_status}]
                },
            }
        ],
    }


class FakePayPalHTTP:
    """Replaces the :class:`requests.Session` used by :class:`PayPalGateway`."""

    def __init__(self):
        self.calls = []
        self.orders = {}
        self.token_requests = 0
        self.fail_create = False
        self.capture_response = None
        self.token_response = None

    def post(self, url, **kwargs):
        self.token_requests += 1
        self.calls.append(("POST", url, kwargs))
        if self.token_response is not None:
            return FakeResponse(*self.token_response)
        return FakeResponse(200, {"access_token": "A21AAFake", "token_type": "Bearer", "expires_in": 32400})

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        path = url.split("paypal.com", 1)[1]
        if method == "POST" and path == "/v2/checkout/orders":
            if self.fail_create:
                return FakeResponse(
                    422,
                    {"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "CURRENCY_NOT_SUPPORTED"}]},
                )
            order_id = f"5O190127TN3647{len(self.orders) + 1:03d}"
            self.orders[order_id] = "CREATED"
            return FakeResponse(
                201,
                {
                    "id": order_id,
                    "status": "CREATED",
                    "links": [
                        {"href": f"https://api-m.sandbox.paypal.com/v2/checkout/orders/{order_id}", "rel": "self"},
                        {"href": f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}", "rel": "approve"},
                    ],
                },
            )

        order_id = path.split("/")[4]
        if order_id not in self.orders:
            return FakeResponse(
                404,
                {"name": "RESOURCE_NOT_FOUND", "details": [{"issue": "INVALID_RESOURCE_ID"}]},
            )
        if path.endswith("/capture"):
            if self.capture_response is not None:
                return FakeResponse(*self.capture_response)
            if self.orders[order_id] == "COMPLETED":
                return FakeResponse(
                    422,
                    {"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_ALREADY_CAPTURED"}]},
                )
            self.orders[order_id] = "COMPLETED"
            return FakeResponse(201, captured_order(order_id))

        if self.orders[order_id] == "COMPLETED":
            return FakeResponse(200, captured_order(order_id))
        return FakeResponse(200, {"id": order_id, "status": self.orders[order_id]})


@pytest.fixture
def paypal_http():
    return FakePayPalHTTP()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
def app(paypal_http):
    """Flask app with in-memory SQLite, both gateways and the admin area."""
    application = Flask(__name__)
    application.config["TESTING"] = True
    application.config["SECRET_KEY"] = "test-secret"
    application.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
    application.config["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
    # CSRF is exercised in test_csrf.py with the check switched back on.
    application.config["WTF_CSRF_ENABLED"] = False

    db = SQLAlchemy(model_class=Base)
    db.init_app(application)

    admin = Admin(name="Test Admin", index_view=PaygateAdminIndexView())
    admin.init_app(application)

    gateways = [
        StripeGateway("sk_test_123", currency="usd"),
        PayPalGateway("client-id", "client-secret", session=paypal_http),
    ]
    Paygate(application, db=db, gateways=gateways, admin=admin)

    with application.app_context():
        db.create_all()

    return application


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def ext(app):
    """The Paygate extension instance."""
    return app.extensions["paygate"]


@pytest.fixture
def user(app, ext):
    """A regular account, returned as a plain dict."""
    with app.app_context():
        return ext.create_user("Ada Lovelace", "ada@example.com", "secret123").to_dict()


@pytest.fixture
def admin_user(app, ext):
    """An admin account, returned as a plain dict."""
    with app.app_context():
        return ext.create_user("Grace Hopper", "grace@example.com", "secret123", is_admin=True).to_dict()


def login(client, email, password="secret123"):
    return client.post("/login", data={"email": email, "password": password})
