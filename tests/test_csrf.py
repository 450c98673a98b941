"""Tests for CSRF protection on the form and JSON endpoints."""

import re

import pytest

from conftest import login
from test_stripe import _post_webhook, _signed_event


def _token(client, path="/login"):
    resp = client.get(path)
    match = re.search(rb'name="csrf_token" value="([^"]+)"', resp.data)
    assert match is not None
    return match.group(1).decode()


@pytest.fixture
def csrf_app(app):
    app.config["WTF_CSRF_ENABLED"] = True
    return app


def test_every_form_renders_a_token(csrf_app, client, user):
    for path in ("/login", "/register", "/stripe/", "/paypal/"):
        assert b'name="csrf_token"' in client.get(path).data
    client.post("/login", data={"email": "ada@example.com", "password": "secret123", "csrf_token": _token(client)})
    assert b'name="csrf_token"' in client.get("/dashboard").data


def test_checkout_without_token_rejected(csrf_app, client, ext, fake_stripe):
    resp = client.post(
        "/stripe/checkout",
        data={"amount": "10.00", "description": "Coffee beans"},
        headers={"Origin": "https://evil.example"},
    )
    assert resp.status_code == 400
    assert fake_stripe.created == []
    with csrf_app.app_context():
        assert ext.all_sessions() == []


def test_checkout_with_token_accepted(csrf_app, client, fake_stripe):
    token = _token(client, "/stripe/")
    resp = client.post(
        "/stripe/checkout",
        data={"amount": "10.00", "description": "Coffee beans", "csrf_token": token},
    )
    assert resp.status_code == 302
    assert resp.headers["Location"] == "https://checkout.stripe.com/c/pay/cs_test_0001"


def test_json_checkout_needs_header_token(csrf_app, client, paypal_http):
    body = {"amount": "25.00", "description": "Concert ticket"}
    assert client.post("/paypal/checkout", json=body).status_code == 400

    resp = client.post("/paypal/checkout", json=body, headers={"X-CSRFToken": _token(client, "/paypal/")})
    assert resp.status_code == 200
    assert resp.get_json()["session_id"] == "5O190127TN3647001"


def test_login_and_register_without_token_rejected(csrf_app, client, user):
    assert login(client, "ada@example.com").status_code == 400
    resp = client.post(
        "/register",
        data={
            "name": "Mallory",
            "email": "mallory@example.com",
            "password": "secret123",
            "password_confirmation": "secret123",
        },
    )
    assert resp.status_code == 400


def test_logout_without_token_keeps_session(app, client, user):
    login(client, "ada@example.com")
    app.config["WTF_CSRF_ENABLED"] = True

    assert client.post("/logout").status_code == 400
    assert client.get("/dashboard").status_code == 200

    resp = client.post("/logout", data={"csrf_token": _token(client, "/dashboard")})
    assert resp.status_code == 302
    assert client.get("/dashboard").status_code == 302


def test_admin_action_without_token_rejected(app, client, ext, fake_stripe, admin_user):
    client.post("/stripe/checkout", data={"amount": "10", "description": "Coffee"})
    login(client, "grace@example.com")
    app.config["WTF_CSRF_ENABLED"] = True

    resp = client.post("/admin/payments/action/", data={"action": "refund", "rowid": ["1"]})
    assert resp.status_code == 400
    with app.app_context():
        assert ext.get_session("cs_test_0001")["state"] == "pending"


def test_webhook_is_exempt(csrf_app, client, ext, fake_stripe):
    csrf_app.config["WTF_CSRF_ENABLED"] = False
    client.post("/stripe/checkout", data={"amount": "10", "description": "Coffee"})
    csrf_app.config["WTF_CSRF_ENABLED"] = True

    payload, signature = _signed_event(
        "checkout.session.completed",
        {"id": "cs_test_0001", "object": "checkout.session", "payment_status": "paid", "payment_intent": "pi_9"},
    )
    resp = _post_webhook(client, payload, signature)
    assert resp.status_code == 200
    assert resp.get_json()["updated"] is True
