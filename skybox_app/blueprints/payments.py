# skybox_app/blueprints/payments.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import login_required
from ..errors import NotFound, ValidationError
from ..models import PaymentTransaction
from ..services.payments import PaymentVerificationError, get_payment_gateway, settle_payment, start_checkout

bp = Blueprint("payments", __name__, url_prefix="/payments")


@bp.route("/create-order", methods=["POST"])
@login_required
def create_order():
    body = request.get_json(silent=True) or {}
    plan_id = body.get("planId")
    if not plan_id:
        raise ValidationError("Informe planId.")
    order, tier = start_checkout(g.owner_id, plan_id)
    return jsonify({
        "success": True,
        "orderId": order.order_id,
        "clientSecret": order.client_secret,
        "amount": order.amount,
        "currency": order.currency,
        "planId": tier.slug,
        "credits": tier.credits,
    })

@bp.route("/transactions", methods=["GET"])
@login_required
def transactions():
    rows = (PaymentTransaction.query
            .filter_by(owner_id=g.owner_id)
            .order_by(PaymentTransaction.created_at.desc())
            .all())
    return jsonify([t.to_dict() for t in rows])

# -------- Webhook do gateway --------
# Para o cliente só devolvemos success true/false; o motivo real vai para o log.
@bp.route("/webhook", methods=["POST"])
def payment_webhook():
    sig = request.headers.get("Stripe-Signature", "")
    try:
        proof = get_payment_gateway().verify_callback(request.get_data(), sig)
    except PaymentVerificationError as e:
        current_app.logger.warning("Webhook de pagamento rejeitado: %s", e)
        return jsonify(success=False), 400

    if proof is None:
        return jsonify(success=True)

    try:
        settle_payment(proof)
    except (NotFound, ValidationError) as e:
        current_app.logger.error("Webhook de pagamento %s não aplicado: %s", proof.order_id, e)
        return jsonify(success=False), 400
    except SQLAlchemyError:
        current_app.logger.exception("Webhook de pagamento %s: erro de banco", proof.order_id)
        return jsonify(success=False), 500
    return jsonify(success=True)
