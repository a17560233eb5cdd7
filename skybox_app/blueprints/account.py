# skybox_app/blueprints/account.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from flask import Blueprint, g, jsonify

from ..decorators import login_required
from ..services import lifecycle
from ..services.plans import PLAN_TIERS

bp = Blueprint("account", __name__, url_prefix="/users")

def _human_bytes(b):
    b = int(b or 0)
    mb = b / (1024*1024)
    if mb < 1024: return f"{mb:.1f} MB"
    gb = mb/1024; return f"{gb:.2f} GB"

@bp.route("/me")
@login_required
def me():
    return jsonify(g.profile.to_dict())

@bp.route("/credits")
@login_required
def credits():
    ledger = lifecycle.get_ledger(g.owner_id)
    data = ledger.to_dict()
    limit = ledger.storage_limit_bytes or 0
    data.update(
        planName=PLAN_TIERS[ledger.plan_tier].name if ledger.plan_tier in PLAN_TIERS else ledger.plan_tier,
        storageUsedHuman=_human_bytes(ledger.storage_used_bytes),
        storageLimitHuman=_human_bytes(limit),
        storagePct=int(ledger.storage_used_bytes * 100 // limit) if limit else 0,
    )
    return jsonify(data)
