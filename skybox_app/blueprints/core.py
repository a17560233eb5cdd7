# skybox_app/blueprints/core.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services.plans import PLAN_TIERS

bp = Blueprint("core", __name__)

@bp.route("/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        current_app.logger.warning("Health check: banco indisponível: %s", e)
        db_ok = False
    body = {"status": "ok" if db_ok else "degraded", "db": db_ok,
            "started_at": current_app.config.get("STARTED_AT")}
    return jsonify(body), (200 if db_ok else 503)

@bp.route("/plans")
def plans():
    return jsonify([
        {"id": p.slug, "name": p.name, "price": p.price, "credits": p.credits,
         "storageLimitBytes": p.storage_limit_bytes}
        for p in PLAN_TIERS.values()
    ])
