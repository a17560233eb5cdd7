# skybox_app/extensions.py
# -*- coding: utf-8 -*-
from __future__ import annotations
import click
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import text, func


db = SQLAlchemy()
migrate = Migrate()
scheduler = BackgroundScheduler(daemon=True)

def init_extensions(app):
    # DB/Migrate
    db.init_app(app)
    migrate.init_app(app, db)

def register_cli(app):
    @app.cli.command("init-db")
    def init_db_cmd():
        """Cria as tabelas iniciais (DEV/MVP). Para produção: use flask db upgrade."""
        with app.app_context():
            # sanity check
            db.session.execute(text("SELECT 1"))
            db.create_all()
            print("Tabelas criadas.")

    @app.cli.command("storage-report")
    @click.option("--only-drift", is_flag=True, help="Lista apenas owners com divergência.")
    def storage_report_cmd(only_drift):
        """Compara storage_used_bytes do ledger com a soma dos FileRecords (somente leitura)."""
        from .models import CreditLedger, FileRecord

        with app.app_context():
            sums = dict(
                db.session.query(FileRecord.owner_id, func.coalesce(func.sum(FileRecord.size_bytes), 0))
                .group_by(FileRecord.owner_id)
                .all()
            )
            drift = 0
            for ledger in CreditLedger.query.order_by(CreditLedger.owner_id).all():
                actual = int(sums.pop(ledger.owner_id, 0))
                ok = actual == ledger.storage_used_bytes
                if not ok:
                    drift += 1
                if ok and only_drift:
                    continue
                flag = "OK" if ok else "DRIFT"
                print(f"{flag}\t{ledger.owner_id}\tledger={ledger.storage_used_bytes}\tfiles={actual}")
            # arquivos sem ledger
            for owner_id, actual in sums.items():
                drift += 1
                print(f"DRIFT\t{owner_id}\tledger=-\tfiles={int(actual)}")
            print(f"{drift} owner(s) com divergência.")
