# tests/conftest.py
# -*- coding: utf-8 -*-
import os
import sys
import pathlib
import tempfile

# Ambiente de testes ANTES de qualquer import de config/skybox_app
_fd, _DB_PATH = tempfile.mkstemp(prefix="skybox_test_", suffix=".sqlite")
os.close(_fd)
os.environ["APP_ENV"] = "testing"
os.environ["FLASK_ENV"] = "testing"
os.environ["DISABLE_SCHEDULER"] = "1"
os.environ["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{_DB_PATH}"
os.environ.setdefault("SECRET_KEY", "testing-secret")

ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from skybox_app.errors import Unauthenticated, ExternalStoreFailure
from skybox_app.services.identity import VerifiedIdentity
from skybox_app.services.object_store import ObjectNotFound


# =====================================================================================
# Fakes dos serviços externos (registrados em app.extensions)
# =====================================================================================
class FakeObjectStore:
    """Bucket em memória com a mesma interface do R2ObjectStore."""

    def __init__(self, multipart_threshold=5 * 1024 * 1024, chunk_size=5 * 1024 * 1024):
        self.objects = {}
        self.content_types = {}
        self.multipart_threshold = multipart_threshold
        self.chunk_size = chunk_size
        self.calls = []
        self.fail_puts = False
        self.fail_deletes = False

    def upload(self, key, data, content_type):
        self.calls.append(("upload", key))
        if self.fail_puts:
            raise ExternalStoreFailure(f"Falha no upload para o storage: {key}")
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type

    put = upload

    def put_multipart(self, key, chunks, content_type):
        self.upload(key, b"".join(chunks), content_type)

    def get(self, key):
        self.calls.append(("get", key))
        if key not in self.objects:
            raise ObjectNotFound(key)
        return self.objects[key]

    def exists(self, key):
        return key in self.objects

    def presigned_url(self, key, expires_in=3600):
        self.calls.append(("presign", key))
        return f"https://r2.test/skybox-test/{key}?X-Amz-Expires={expires_in}"

    def delete(self, key):
        self.calls.append(("delete", key))
        if self.fail_deletes:
            raise ExternalStoreFailure(f"Falha ao remover do storage: {key}")
        self.objects.pop(key, None)

    def writes(self):
        return [c for c in self.calls if c[0] == "upload"]


class FakeTokenVerifier:
    """Aceita tokens no formato 'token-<clerk_id>'."""

    def verify(self, token):
        if not token or not token.startswith("token-"):
            raise Unauthenticated("Token inválido.")
        sub = token[len("token-"):]
        return VerifiedIdentity(subject=sub, email=f"{sub.lower()}@test.com", first_name=sub)


def auth_headers(owner_id):
    return {"Authorization": f"Bearer token-{owner_id}"}


@pytest.fixture
def auth():
    """auth("U1") -> headers com bearer aceito pelo FakeTokenVerifier."""
    return auth_headers


# =====================================================================================
# App Flask com SQLite temporário
# =====================================================================================
@pytest.fixture(scope="session")
def app():
    from skybox_app import create_app
    from config import TestingConfig

    app = create_app(TestingConfig)
    yield app

    try:
        os.remove(_DB_PATH)
    except OSError:
        pass


@pytest.fixture(autouse=True)
def _fresh_schema(app):
    """Schema limpo por teste."""
    from skybox_app.extensions import db
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield
    with app.app_context():
        db.session.remove()


@pytest.fixture
def store(app):
    fake = FakeObjectStore()
    previous = app.extensions.get("object_store")
    app.extensions["object_store"] = fake
    yield fake
    app.extensions["object_store"] = previous


@pytest.fixture(autouse=True)
def _fake_verifier(app):
    previous = app.extensions.get("token_verifier")
    app.extensions["token_verifier"] = FakeTokenVerifier()
    yield
    app.extensions["token_verifier"] = previous


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    from skybox_app.extensions import db
    with app.app_context():
        try:
            yield db.session
        finally:
            db.session.rollback()
            db.session.close()


# =====================================================================================
# Helpers/Factories
# =====================================================================================
def make_ledger(owner_id, *, credits=5, used=0, limit=1000, tier="BASIC"):
    from skybox_app.extensions import db
    from skybox_app.models import CreditLedger
    led = CreditLedger(owner_id=owner_id, credits_remaining=credits, storage_used_bytes=used,
                       storage_limit_bytes=limit, plan_tier=tier)
    db.session.add(led); db.session.commit()
    return led


@pytest.fixture
def ledger_factory(ctx):
    return make_ledger
