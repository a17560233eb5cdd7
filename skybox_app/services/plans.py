# skybox_app/services/plans.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from dataclasses import dataclass

from ..errors import ValidationError

MIB = 1024 * 1024
GIB = 1024 * MIB


@dataclass(frozen=True)
class PlanTier:
    slug: str
    name: str
    price: int                  # unidade mínima da moeda (paise)
    credits: int                # créditos concedidos na compra (ou iniciais no BASIC)
    storage_limit_bytes: int


# conjunto fechado de planos; só muda via pagamento verificado
PLAN_TIERS: dict[str, PlanTier] = {
    "BASIC": PlanTier("BASIC", "Free", 0, 5, 125 * MIB),
    "PREMIUM": PlanTier("PREMIUM", "Premium", 8000, 210, 1 * GIB),
    "ULTIMATE": PlanTier("ULTIMATE", "Ultimate", 14000, 1024, 5 * GIB),
}

DEFAULT_TIER = "BASIC"


def get_plan(slug: str | None) -> PlanTier:
    tier = PLAN_TIERS.get((slug or "").strip().upper())
    if tier is None:
        raise ValidationError(f"Plano desconhecido: {slug}")
    return tier


def purchasable_plans() -> list[PlanTier]:
    return [p for p in PLAN_TIERS.values() if p.price > 0]
