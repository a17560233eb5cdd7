# skybox_app/models/payment.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime
from ..extensions import db

class PaymentTransaction(db.Model):
    __tablename__ = "payment_transactions"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), index=True, nullable=False)
    order_id = db.Column(db.String(120), unique=True, nullable=False)   # id do pedido no gateway
    payment_id = db.Column(db.String(120))
    plan_tier = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Integer, nullable=False, default=0)           # unidade mínima (paise/centavos)
    currency = db.Column(db.String(8), nullable=False, default="inr")
    status = db.Column(db.String(20), nullable=False, default="PENDING")  # PENDING, SUCCESS, FAILED
    credits_granted = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "paymentId": self.payment_id,
            "planId": self.plan_tier,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "creditsAdded": self.credits_granted,
            "transactionDate": self.created_at.isoformat() if self.created_at else None,
        }
