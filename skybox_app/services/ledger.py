# skybox_app/services/ledger.py
# -*- coding: utf-8 -*-
"""Operações sobre o CreditLedger.

Toda escrita é um único UPDATE condicional (nada de ler, alterar e salvar o
objeto), o que serializa uploads/deletes concorrentes do mesmo owner no banco.
As funções de escrita NÃO fazem commit: quem chama decide a transação.
"""
from __future__ import annotations
from datetime import datetime

from sqlalchemy import update, case
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CreditLedger
from .plans import PLAN_TIERS, DEFAULT_TIER, PlanTier


def get_or_create_ledger(owner_id: str) -> CreditLedger:
    led = CreditLedger.query.filter_by(owner_id=owner_id).first()
    if led:
        return led
    tier = PLAN_TIERS[DEFAULT_TIER]
    led = CreditLedger(
        owner_id=owner_id,
        credits_remaining=tier.credits,
        storage_used_bytes=0,
        storage_limit_bytes=tier.storage_limit_bytes,
        plan_tier=tier.slug,
    )
    db.session.add(led)
    try:
        db.session.commit()
    except IntegrityError:
        # outro request criou o ledger primeiro
        db.session.rollback()
        led = CreditLedger.query.filter_by(owner_id=owner_id).one()
    return led


def _update(owner_id: str, *conditions):
    return (
        update(CreditLedger)
        .where(CreditLedger.owner_id == owner_id, *conditions)
        .execution_options(synchronize_session=False)
    )


def _bump():
    return {"version": CreditLedger.version + 1, "updated_at": datetime.utcnow()}


def consume_upload(owner_id: str, size_bytes: int) -> bool:
    """Debita 1 crédito e soma size_bytes, só se ainda couber. True se aplicou."""
    stmt = _update(
        owner_id,
        CreditLedger.credits_remaining >= 1,
        CreditLedger.storage_used_bytes + size_bytes <= CreditLedger.storage_limit_bytes,
    ).values(
        credits_remaining=CreditLedger.credits_remaining - 1,
        storage_used_bytes=CreditLedger.storage_used_bytes + size_bytes,
        **_bump(),
    )
    return db.session.execute(stmt).rowcount == 1


def release_storage(owner_id: str, size_bytes: int) -> bool:
    """Subtrai size_bytes do uso, com piso em 0. Créditos não são devolvidos."""
    stmt = _update(owner_id).values(
        storage_used_bytes=case(
            (CreditLedger.storage_used_bytes >= size_bytes, CreditLedger.storage_used_bytes - size_bytes),
            else_=0,
        ),
        **_bump(),
    )
    return db.session.execute(stmt).rowcount == 1


def set_plan(owner_id: str, tier: PlanTier) -> bool:
    stmt = _update(owner_id).values(
        plan_tier=tier.slug,
        storage_limit_bytes=tier.storage_limit_bytes,
        **_bump(),
    )
    return db.session.execute(stmt).rowcount == 1


def grant_credits(owner_id: str, amount: int) -> bool:
    if amount <= 0:
        return False
    stmt = _update(owner_id).values(
        credits_remaining=CreditLedger.credits_remaining + amount,
        **_bump(),
    )
    return db.session.execute(stmt).rowcount == 1


def refresh_ledger(owner_id: str) -> CreditLedger:
    """Relê o ledger do banco, ignorando o estado em memória da sessão."""
    led = CreditLedger.query.filter_by(owner_id=owner_id).first()
    if led is not None:
        db.session.refresh(led)
    return led
