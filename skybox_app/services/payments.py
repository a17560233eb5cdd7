# skybox_app/services/payments.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime

import stripe
from flask import current_app
from sqlalchemy import update

from ..errors import ExternalStoreFailure, NotFound, ValidationError
from ..extensions import db
from ..models import PaymentTransaction, AuditLog
from . import ledger as ledger_svc
from .plans import get_plan, PlanTier


@dataclass(frozen=True)
class Order:
    order_id: str
    client_secret: str | None
    amount: int
    currency: str


@dataclass(frozen=True)
class VerifiedPayment:
    """Comprovante gerado SOMENTE após checar a assinatura do callback."""
    order_id: str
    payment_id: str | None
    succeeded: bool
    event_type: str


class PaymentVerificationError(Exception):
    """Callback rejeitado; `kind` fica só no log, nunca vai para o cliente."""

    def __init__(self, kind: str, detail: str = ""):
        super().__init__(f"{kind}: {detail}" if detail else kind)
        self.kind = kind


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: str):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def _stripe(self):
        stripe.api_key = self.secret_key
        stripe.max_network_retries = 0
        return stripe

    def create_order(self, amount: int, currency: str, metadata: dict | None = None) -> Order:
        s = self._stripe()
        try:
            intent = s.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata or {},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            raise ExternalStoreFailure("Falha ao criar pedido no gateway de pagamento.") from e
        return Order(order_id=intent["id"], client_secret=intent.get("client_secret"),
                     amount=amount, currency=currency)

    def verify_callback(self, payload: bytes, signature_header: str) -> VerifiedPayment | None:
        """Valida a assinatura (HMAC) e traduz o evento. None para eventos ignorados."""
        if not self.webhook_secret:
            raise PaymentVerificationError("not_configured", "STRIPE_WEBHOOK_SECRET vazio")
        s = self._stripe()
        try:
            event = s.Webhook.construct_event(payload, signature_header or "", self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise PaymentVerificationError("bad_signature", str(e)) from e
        except ValueError as e:
            raise PaymentVerificationError("bad_payload", str(e)) from e

        typ = event["type"]
        obj = event["data"]["object"]
        if typ == "payment_intent.succeeded":
            return VerifiedPayment(order_id=obj["id"], payment_id=obj.get("latest_charge"),
                                   succeeded=True, event_type=typ)
        if typ == "payment_intent.payment_failed":
            return VerifiedPayment(order_id=obj["id"], payment_id=obj.get("latest_charge"),
                                   succeeded=False, event_type=typ)
        return None


def init_payments(app):
    app.extensions["payment_gateway"] = StripeGateway(
        app.config.get("STRIPE_SECRET_KEY", ""),
        app.config.get("STRIPE_WEBHOOK_SECRET", ""),
    )

def get_payment_gateway() -> StripeGateway:
    return current_app.extensions["payment_gateway"]


# ---------------------------------------------------------------------------
# Fluxo de compra
# ---------------------------------------------------------------------------
def start_checkout(owner_id: str, plan_slug: str) -> tuple[Order, PlanTier]:
    tier = get_plan(plan_slug)
    if tier.price <= 0:
        raise ValidationError(f"O plano {tier.slug} não é pago.")
    ledger_svc.get_or_create_ledger(owner_id)
    currency = current_app.config.get("PAYMENT_CURRENCY", "inr")
    order = get_payment_gateway().create_order(
        tier.price, currency, metadata={"clerk_id": owner_id, "plan": tier.slug},
    )
    db.session.add(PaymentTransaction(
        owner_id=owner_id, order_id=order.order_id, plan_tier=tier.slug,
        amount=tier.price, currency=currency, status="PENDING",
    ))
    db.session.commit()
    return order, tier


def _transition(order_id: str, new_status: str, payment_id: str | None, credits: int = 0,
                from_statuses: tuple[str, ...] = ("PENDING",)) -> bool:
    """from_statuses -> new_status; só um callback vence a transição."""
    stmt = (
        update(PaymentTransaction)
        .where(PaymentTransaction.order_id == order_id, PaymentTransaction.status.in_(from_statuses))
        .values(status=new_status, payment_id=payment_id, credits_granted=credits,
                updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def settle_payment(proof: VerifiedPayment) -> bool:
    """Aplica um callback verificado. False se o pedido já havia sido processado."""
    from .lifecycle import apply_verified_payment

    tx = PaymentTransaction.query.filter_by(order_id=proof.order_id).first()
    if tx is None:
        raise NotFound(f"Pedido desconhecido: {proof.order_id}")

    if not proof.succeeded:
        changed = _transition(proof.order_id, "FAILED", proof.payment_id)
        db.session.commit()
        return changed

    tier = get_plan(tx.plan_tier)
    ledger_svc.get_or_create_ledger(tx.owner_id)
    # recusa não é terminal no gateway: o cliente pode tentar de novo no mesmo pedido
    if not _transition(proof.order_id, "SUCCESS", proof.payment_id, credits=tier.credits,
                       from_statuses=("PENDING", "FAILED")):
        db.session.rollback()
        current_app.logger.info("Pedido %s já processado; callback ignorado", proof.order_id)
        return False

    apply_verified_payment(tx.owner_id, tier.slug, proof, commit=False)
    ledger_svc.grant_credits(tx.owner_id, tier.credits)
    db.session.add(AuditLog(owner_id=tx.owner_id, action="credit_grant", ref=f"order:{proof.order_id}",
                            description=f"+{tier.credits} créditos"))
    db.session.commit()
    current_app.logger.info("Pagamento %s aplicado: %s -> %s (+%d créditos)",
                            proof.order_id, tx.owner_id, tier.slug, tier.credits)
    return True
