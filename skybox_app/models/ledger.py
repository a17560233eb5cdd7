# skybox_app/models/ledger.py
from __future__ import annotations
from datetime import datetime
from ..extensions import db

class CreditLedger(db.Model):
    __tablename__ = "credit_ledgers"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    credits_remaining = db.Column(db.Integer, nullable=False, default=0)      # uploads ainda permitidos
    storage_used_bytes = db.Column(db.BigInteger, nullable=False, default=0)  # bytes atualmente armazenados
    storage_limit_bytes = db.Column(db.BigInteger, nullable=False, default=0)
    plan_tier = db.Column(db.String(20), nullable=False, default="BASIC")

    # token otimista: todo UPDATE condicional incrementa
    version = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint("credits_remaining >= 0", name="ck_ledger_credits_non_negative"),
        db.CheckConstraint("storage_used_bytes >= 0", name="ck_ledger_storage_non_negative"),
    )

    def to_dict(self) -> dict:
        return {
            "clerkId": self.owner_id,
            "credits": self.credits_remaining,
            "plan": self.plan_tier,
            "storageUsedBytes": self.storage_used_bytes,
            "storageLimitBytes": self.storage_limit_bytes,
        }
