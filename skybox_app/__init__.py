# skybox_app/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from datetime import datetime

from flask import Flask
from config import Config, TestingConfig, StagingConfig, ProductionConfig
from .extensions import db, migrate, scheduler, init_extensions, register_cli
from .errors import register_error_handlers
from .services.object_store import init_object_store
from .services.identity import init_identity
from .services.payments import init_payments
from .blueprints.core import bp as core_bp
from .blueprints.files import bp as files_bp
from .blueprints.account import bp as account_bp
from .blueprints.payments import bp as payments_bp

def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app_env = os.getenv("APP_ENV", "").lower()

    if config_object is not None:
        app.config.from_object(config_object)
    elif app_env == "testing":
        app.config.from_object(TestingConfig)
    elif app_env == "staging":
        app.config.from_object(StagingConfig)
    elif app_env == "production":
        app.config.from_object(ProductionConfig)
    else:
        app.config.from_object(Config)

    # Extensões (DB/Migrate/Scheduler)
    init_extensions(app)

    # Serviços externos: ficam disponíveis em app.extensions
    init_object_store(app)  # app.extensions["object_store"]
    init_identity(app)      # app.extensions["token_verifier"]
    init_payments(app)      # app.extensions["payment_gateway"]
    app.config["STARTED_AT"] = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S UTC")

    register_error_handlers(app)

    # Blueprints
    app.register_blueprint(core_bp)
    app.register_blueprint(files_bp)
    app.register_blueprint(account_bp)
    app.register_blueprint(payments_bp)
    # CLI (ex.: flask init-db)
    register_cli(app)

    # Scheduler: refresh periódico do JWKS do Clerk
    if not app.config.get("TESTING") and os.getenv("DISABLE_SCHEDULER") != "1":
        cache = app.extensions["jwks_cache"]
        scheduler.add_job(cache.refresh, "interval", seconds=cache.ttl,
                          id="jwks-refresh", replace_existing=True)
        if not scheduler.running:
            scheduler.start()

    return app
