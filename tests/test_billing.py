import io
import json
import urllib.error

import pytest

from app.steward.db import session_scope
from app.steward.models import Church
from app.steward.modules.billing.models import Subscription
from app.steward.modules.billing.service import handle_webhook_event, map_subscription_status
from app.steward.modules.billing import stripe_client
from app.steward.modules.billing.stripe_client import (
    StripeClient,
    StripeSignatureError,
    sign_payload,
    verify_webhook_signature,
)

SECRET = "whsec_test"


def _post_event(client, event: dict, *, secret: str = SECRET, signature: str | None = None):
    payload = json.dumps(event).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    sig = signature if signature is not None else sign_payload(payload, secret)
    if sig:
        headers["Stripe-Signature"] = sig
    return client.post("/api/stripe/webhook", data=payload, headers=headers, base_url="http://localhost")


@pytest.mark.parametrize(
    "stripe_status,expected",
    [
        ("active", "active"),
        ("trialing", "active"),
        ("past_due", "past_due"),
        ("canceled", "canceled"),
        ("unpaid", "unpaid"),
        ("incomplete", "unpaid"),
        (None, "unpaid"),
    ],
)
def test_map_subscription_status(stripe_status, expected):
    assert map_subscription_status(stripe_status) == expected


def test_verify_webhook_signature():
    payload = b'{"type": "ping"}'
    header = sign_payload(payload, SECRET, timestamp=1_700_000_000)
    verify_webhook_signature(payload, header, SECRET, now=1_700_000_010)

    with pytest.raises(StripeSignatureError):
        verify_webhook_signature(payload + b" ", header, SECRET, now=1_700_000_010)
    with pytest.raises(StripeSignatureError):
        verify_webhook_signature(payload, header, "whsec_other", now=1_700_000_010)
    with pytest.raises(StripeSignatureError):
        verify_webhook_signature(payload, header, SECRET, now=1_700_001_000)
    with pytest.raises(StripeSignatureError):
        verify_webhook_signature(payload, "garbage", SECRET)


def test_plans_are_public(app):
    r = app.test_client().get("/api/stripe/plans")
    assert r.status_code == 200
    assert [p["key"] for p in r.json["plans"]] == ["free", "basic", "premium"]


def test_webhook_rejects_missing_and_bad_signatures(app):
    c = app.test_client()
    r = _post_event(c, {"type": "ping"}, signature="")
    assert r.status_code == 400
    assert r.json["error"] == "Missing stripe-signature header"

    r = _post_event(c, {"type": "ping"}, secret="whsec_wrong")
    assert r.status_code == 400
    assert r.json["error"] == "Webhook signature verification failed"


def test_webhook_checkout_completed_activates_church(app, seed):
    with session_scope(app) as s:
        church = s.get(Church, seed.other_church_id)
        church.subscription_status = "unpaid"

    event = {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "customer": "cus_123",
                "subscription": "sub_123",
                "metadata": {"church_id": str(seed.other_church_id), "plan": "premium"},
            }
        },
    }
    r = _post_event(app.test_client(), event)
    assert r.status_code == 200
    assert r.json == {"received": True}

    with session_scope(app) as s:
        church = s.get(Church, seed.other_church_id)
        assert church.subscription_status == "active"
        assert church.subscription_plan == "premium"
        assert church.stripe_customer_id == "cus_123"
        assert church.stripe_subscription_id == "sub_123"
        sub = s.query(Subscription).filter(Subscription.stripe_subscription_id == "sub_123").one()
        assert sub.church_id == church.id


def test_subscription_updated_and_deleted(app, seed):
    with app.app_context(), session_scope(app) as s:
        church = s.get(Church, seed.other_church_id)
        church.stripe_customer_id = "cus_456"
        handle_webhook_event(
            s,
            {
                "type": "customer.subscription.updated",
                "data": {"object": {"id": "sub_456", "customer": "cus_456", "status": "past_due"}},
            },
        )
        assert church.subscription_status == "past_due"

        handle_webhook_event(
            s,
            {
                "type": "customer.subscription.deleted",
                "data": {"object": {"id": "sub_456", "customer": "cus_456"}},
            },
        )
        assert church.subscription_status == "canceled"
        assert s.query(Subscription).filter(Subscription.stripe_subscription_id == "sub_456").one().status == "canceled"


def test_unhandled_event_is_acknowledged(app):
    r = _post_event(app.test_client(), {"type": "invoice.paid", "data": {"object": {}}})
    assert r.status_code == 200


def test_checkout_without_stripe_is_503(admin_client):
    r = admin_client.post("/api/stripe/create-checkout", json={"plan": "premium"})
    assert r.status_code == 503
    assert r.json["error"] == "Billing is not configured"

    r = admin_client.post("/api/stripe/create-checkout", json={"plan": "free"})
    assert r.status_code == 400


def test_checkout_requires_billing_permission(viewer_client):
    r = viewer_client.post("/api/stripe/create-checkout", json={"plan": "premium"})
    assert r.status_code == 403
    assert r.json["missingPermission"] == "billing.manage"


def test_portal_requires_customer(admin_client):
    r = admin_client.post("/api/stripe/portal")
    assert r.status_code == 400
    assert r.json["error"] == "No billing account found for this church"


def test_post_retries_reuse_idempotency_key(monkeypatch):
    sent = []

    def fake_urlopen(req, timeout=None):
        sent.append(req)
        if len(sent) == 1:
            raise urllib.error.URLError("connection reset")
        return io.BytesIO(b'{"id": "cus_123"}')

    monkeypatch.setattr(stripe_client.urllib.request, "urlopen", fake_urlopen)
    monkeypatch.setattr(stripe_client.time, "sleep", lambda s: None)

    client = StripeClient(secret_key="sk_test")
    assert client.create_customer(email="a@b.org", name="A")["id"] == "cus_123"
    assert len(sent) == 2
    keys = [r.get_header("Idempotency-key") for r in sent]
    assert keys[0] and keys[0] == keys[1]

    client.create_customer(email="c@d.org", name="C")
    assert sent[2].get_header("Idempotency-key") not in (None, keys[0])


def test_get_has_no_idempotency_key(monkeypatch):
    sent = []

    def fake_urlopen(req, timeout=None):
        sent.append(req)
        return io.BytesIO(b'{"id": "sub_1"}')

    monkeypatch.setattr(stripe_client.urllib.request, "urlopen", fake_urlopen)
    StripeClient(secret_key="sk_test").get_subscription("sub_1")
    assert sent[0].get_header("Idempotency-key") is None
