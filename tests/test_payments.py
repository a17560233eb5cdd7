# tests/test_payments.py
from __future__ import annotations
import json

import pytest
import stripe

from skybox_app.models import AuditLog, PaymentTransaction
from skybox_app.services import ledger as ledger_svc
from skybox_app.services.payments import VerifiedPayment, settle_payment


@pytest.fixture
def fake_intents(monkeypatch):
    """PaymentIntent.create devolve ids sequenciais e registra os kwargs."""
    created = []

    def create(**kwargs):
        created.append(kwargs)
        n = len(created)
        return {"id": f"pi_{n}", "client_secret": f"pi_{n}_secret"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(create), raising=True)
    return created


def _event(typ, intent_id, charge="ch_1"):
    return {"type": typ, "data": {"object": {"id": intent_id, "latest_charge": charge}}}


@pytest.fixture
def webhook_event(monkeypatch):
    """Define o evento que construct_event vai devolver (assinatura sempre válida)."""
    state = {"event": None, "calls": []}

    def construct(payload, sig, secret):
        state["calls"].append((payload, sig, secret))
        return state["event"]

    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(construct), raising=True)
    return state


def _post_webhook(client, body=b"{}"):
    return client.post("/payments/webhook", data=body, headers={"Stripe-Signature": "t=1,v1=abc"})


# --------------------------------------------------------------------
# /payments/create-order
# --------------------------------------------------------------------
def test_create_order_records_pending_transaction(client, ctx, auth, fake_intents):
    r = client.post("/payments/create-order", json={"planId": "premium"}, headers=auth("U1"))
    assert r.status_code == 200
    body = r.get_json()
    assert body["success"] is True
    assert body["orderId"] == "pi_1"
    assert body["clientSecret"] == "pi_1_secret"
    assert body["amount"] == 8000
    assert body["currency"] == "inr"
    assert body["planId"] == "PREMIUM"
    assert body["credits"] == 210

    assert fake_intents[0]["amount"] == 8000
    assert fake_intents[0]["metadata"] == {"clerk_id": "U1", "plan": "PREMIUM"}

    tx = PaymentTransaction.query.filter_by(order_id="pi_1").one()
    assert tx.status == "PENDING"
    assert tx.owner_id == "U1"


@pytest.mark.parametrize("payload", [{}, {"planId": "gold"}, {"planId": "basic"}])
def test_create_order_rejects_bad_plans(client, ctx, auth, fake_intents, payload):
    r = client.post("/payments/create-order", json=payload, headers=auth("U1"))
    assert r.status_code == 400
    assert r.get_json()["error"] == "VALIDATION_ERROR"
    assert fake_intents == []
    assert PaymentTransaction.query.count() == 0


def test_create_order_gateway_failure_is_502(client, ctx, auth, monkeypatch):
    def boom(**kwargs):
        raise stripe.APIConnectionError("gateway down")
    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(boom), raising=True)

    r = client.post("/payments/create-order", json={"planId": "ULTIMATE"}, headers=auth("U1"))
    assert r.status_code == 502
    assert PaymentTransaction.query.count() == 0


def test_create_order_requires_auth(client):
    assert client.post("/payments/create-order", json={"planId": "PREMIUM"}).status_code == 401


# --------------------------------------------------------------------
# /payments/webhook
# --------------------------------------------------------------------
def test_webhook_bad_signature_returns_generic_failure(client, monkeypatch):
    def bad(payload, sig, secret):
        raise stripe.SignatureVerificationError("No signatures found", sig)
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(bad), raising=True)

    r = _post_webhook(client)
    assert r.status_code == 400
    assert r.get_json() == {"success": False}


def test_webhook_bad_payload_returns_generic_failure(client, monkeypatch):
    def bad(payload, sig, secret):
        raise ValueError("Invalid payload")
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(bad), raising=True)

    r = _post_webhook(client, b"not json")
    assert r.status_code == 400
    assert r.get_json() == {"success": False}


def test_webhook_without_secret_is_rejected(client, app, webhook_event, monkeypatch):
    monkeypatch.setattr(app.extensions["payment_gateway"], "webhook_secret", "")
    webhook_event["event"] = _event("payment_intent.succeeded", "pi_1")

    r = _post_webhook(client)
    assert r.status_code == 400
    assert r.get_json() == {"success": False}
    assert webhook_event["calls"] == []


def test_webhook_success_upgrades_plan_and_grants_credits_once(client, ctx, auth, fake_intents, webhook_event):
    ledger_svc.get_or_create_ledger("U1")
    client.post("/payments/create-order", json={"planId": "PREMIUM"}, headers=auth("U1"))
    webhook_event["event"] = _event("payment_intent.succeeded", "pi_1", charge="ch_9")

    body = json.dumps({"id": "evt_1"}).encode()
    r = _post_webhook(client, body)
    assert r.status_code == 200
    assert r.get_json() == {"success": True}
    assert webhook_event["calls"][0][0] == body
    assert webhook_event["calls"][0][2] == "whsec_test_123"

    led = ledger_svc.refresh_ledger("U1")
    assert led.plan_tier == "PREMIUM"
    assert led.storage_limit_bytes == 1024 ** 3
    assert led.credits_remaining == 5 + 210

    tx = PaymentTransaction.query.filter_by(order_id="pi_1").one()
    assert (tx.status, tx.payment_id, tx.credits_granted) == ("SUCCESS", "ch_9", 210)

    # callback repetido: nada muda
    r = _post_webhook(client, body)
    assert r.status_code == 200
    assert ledger_svc.refresh_ledger("U1").credits_remaining == 215
    assert AuditLog.query.filter_by(action="credit_grant").count() == 1


def test_webhook_failed_payment_marks_transaction(client, ctx, auth, fake_intents, webhook_event):
    client.post("/payments/create-order", json={"planId": "ULTIMATE"}, headers=auth("U1"))
    webhook_event["event"] = _event("payment_intent.payment_failed", "pi_1", charge=None)

    r = _post_webhook(client)
    assert r.status_code == 200
    tx = PaymentTransaction.query.filter_by(order_id="pi_1").one()
    assert tx.status == "FAILED"
    led = ledger_svc.refresh_ledger("U1")
    assert led.plan_tier == "BASIC"
    assert led.credits_remaining == 5


def test_webhook_unknown_order_is_generic_failure(client, ctx, webhook_event):
    webhook_event["event"] = _event("payment_intent.succeeded", "pi_unknown")
    r = _post_webhook(client)
    assert r.status_code == 400
    assert r.get_json() == {"success": False}


def test_webhook_ignores_other_event_types(client, ctx, webhook_event):
    webhook_event["event"] = {"type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}
    r = _post_webhook(client)
    assert r.status_code == 200
    assert r.get_json() == {"success": True}


# --------------------------------------------------------------------
# settle_payment direto
# --------------------------------------------------------------------
def test_settle_payment_second_success_loses_transition(ctx, auth, client, fake_intents):
    client.post("/payments/create-order", json={"planId": "PREMIUM"}, headers=auth("U1"))
    proof = VerifiedPayment(order_id="pi_1", payment_id="ch_1", succeeded=True,
                            event_type="payment_intent.succeeded")

    assert settle_payment(proof) is True
    assert settle_payment(proof) is False
    assert ledger_svc.refresh_ledger("U1").credits_remaining == 215


def test_failed_after_success_does_not_downgrade(ctx, auth, client, fake_intents):
    client.post("/payments/create-order", json={"planId": "PREMIUM"}, headers=auth("U1"))
    ok = VerifiedPayment(order_id="pi_1", payment_id="ch_1", succeeded=True, event_type="payment_intent.succeeded")
    failed = VerifiedPayment(order_id="pi_1", payment_id="ch_1", succeeded=False,
                             event_type="payment_intent.payment_failed")

    settle_payment(ok)
    assert settle_payment(failed) is False
    tx = PaymentTransaction.query.filter_by(order_id="pi_1").one()
    assert tx.status == "SUCCESS"


def test_success_after_declined_attempt_still_upgrades(ctx, auth, client, fake_intents):
    client.post("/payments/create-order", json={"planId": "PREMIUM"}, headers=auth("U1"))
    declined = VerifiedPayment(order_id="pi_1", payment_id=None, succeeded=False,
                               event_type="payment_intent.payment_failed")
    ok = VerifiedPayment(order_id="pi_1", payment_id="ch_2", succeeded=True, event_type="payment_intent.succeeded")

    assert settle_payment(declined) is True
    assert settle_payment(declined) is False
    assert settle_payment(ok) is True

    tx = PaymentTransaction.query.filter_by(order_id="pi_1").one()
    assert (tx.status, tx.payment_id, tx.credits_granted) == ("SUCCESS", "ch_2", 210)
    led = ledger_svc.refresh_ledger("U1")
    assert led.plan_tier == "PREMIUM"
    assert led.credits_remaining == 5 + 210

    # replay do sucesso continua idempotente
    assert settle_payment(ok) is False
    assert ledger_svc.refresh_ledger("U1").credits_remaining == 215


# --------------------------------------------------------------------
# /payments/transactions
# --------------------------------------------------------------------
def test_transactions_lists_only_own(client, ctx, auth, fake_intents):
    client.post("/payments/create-order", json={"planId": "PREMIUM"}, headers=auth("U1"))
    client.post("/payments/create-order", json={"planId": "ULTIMATE"}, headers=auth("U2"))

    r = client.get("/payments/transactions", headers=auth("U1"))
    assert r.status_code == 200
    rows = r.get_json()
    assert [t["orderId"] for t in rows] == ["pi_1"]
    assert rows[0]["status"] == "PENDING"
    assert rows[0]["planId"] == "PREMIUM"
