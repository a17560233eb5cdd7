# skybox_app/services/lifecycle.py
# -*- coding: utf-8 -*-
"""Ciclo de vida dos arquivos com controle de cota e créditos.

Ordem fixa entre os dois sistemas (sem transação distribuída):
- upload: grava no storage -> grava metadado + ledger (mesma transação do banco)
- delete: remove do storage -> remove metadado + ajusta ledger

Se o processo cair entre as duas etapas fica um objeto órfão no bucket (upload)
ou um metadado apontando para nada (delete). Esse intervalo é aceito e não há
retry automático.
"""
from __future__ import annotations
import os
import uuid
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import delete as sa_delete, update
from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    Forbidden,
    ExternalStoreFailure,
    InconsistentState,
    InsufficientCredits,
    NotFound,
    QuotaExceeded,
    ValidationError,
)
from ..extensions import db
from ..models import AuditLog, CreditLedger, FileRecord
from . import ledger as ledger_svc
from .object_store import ObjectNotFound, get_object_store
from .plans import get_plan

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class UploadPayload:
    data: bytes
    filename: str
    content_type: str | None = None


def _object_key(owner_id: str, filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if len(ext) > 16:
        ext = ""
    return f"private/{owner_id}/{uuid.uuid4()}{ext}"


def _check_allowance(ledger: CreditLedger, size_bytes: int, files: int = 1) -> None:
    if ledger.credits_remaining < files:
        raise InsufficientCredits()
    if ledger.storage_used_bytes + size_bytes > ledger.storage_limit_bytes:
        raise QuotaExceeded(
            f"Limite de armazenamento do plano excedido "
            f"({ledger.storage_used_bytes + size_bytes}/{ledger.storage_limit_bytes} bytes)."
        )


def _discard_object(key: str) -> None:
    try:
        get_object_store().delete(key)
    except ExternalStoreFailure:
        current_app.logger.exception("Objeto órfão no storage (não removido): %s", key)


def _load(file_id: str) -> FileRecord:
    rec = db.session.get(FileRecord, file_id)
    if rec is None:
        raise NotFound()
    return rec


def _load_owned(requester_id: str | None, file_id: str) -> FileRecord:
    rec = _load(file_id)
    if rec.owner_id != requester_id:
        raise Forbidden()
    return rec


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------
def upload(owner_id: str, data: bytes, display_name: str, content_type: str | None,
           size_bytes: int | None = None) -> FileRecord:
    if size_bytes is None:
        size_bytes = len(data)
    if size_bytes <= 0:
        raise ValidationError("Arquivo vazio.")
    if size_bytes != len(data):
        raise ValidationError("Tamanho informado não confere com o conteúdo.")
    display_name = (display_name or "").strip() or "arquivo"
    content_type = content_type or DEFAULT_CONTENT_TYPE

    # 1-2) pré-checagem; nada foi escrito ainda
    _check_allowance(ledger_svc.get_or_create_ledger(owner_id), size_bytes)

    # 3) storage primeiro
    key = _object_key(owner_id, display_name)
    get_object_store().upload(key, data, content_type)

    # 4) metadado + ledger na mesma transação
    rec = FileRecord(
        owner_id=owner_id,
        object_key=key,
        display_name=display_name,
        size_bytes=size_bytes,
        content_type=content_type,
        is_public=False,
        uploaded_at=datetime.utcnow(),
    )
    try:
        db.session.add(rec)
        db.session.flush()
        db.session.add(AuditLog(owner_id=owner_id, action="upload", ref=f"file:{rec.id}", description=display_name))
        applied = ledger_svc.consume_upload(owner_id, size_bytes)
        if not applied:
            # outro request consumiu o saldo entre a checagem e aqui
            db.session.rollback()
            _discard_object(key)
            _check_allowance(ledger_svc.refresh_ledger(owner_id), size_bytes)
            raise QuotaExceeded("O saldo mudou por uma alteração concorrente; tente o upload novamente.")
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.error("Falha ao salvar metadado; objeto órfão no storage: %s", key)
        raise

    current_app.logger.info("Upload concluído: %s (%d bytes) owner=%s", key, size_bytes, owner_id)
    return rec


def upload_many(owner_id: str, files: list[UploadPayload]) -> list[FileRecord]:
    if not files:
        raise ValidationError("Nenhum arquivo enviado.")
    ledger = ledger_svc.get_or_create_ledger(owner_id)
    if ledger.credits_remaining < len(files):
        raise InsufficientCredits(
            "Créditos insuficientes para enviar os arquivos. Adquira mais créditos."
        )
    _check_allowance(ledger, sum(len(f.data) for f in files), files=len(files))
    return [upload(owner_id, f.data, f.filename, f.content_type) for f in files]


# ---------------------------------------------------------------------------
# Download / leitura
# ---------------------------------------------------------------------------
def _can_read(rec: FileRecord, requester_id: str | None) -> bool:
    return bool(rec.is_public) or (requester_id is not None and rec.owner_id == requester_id)


def _touch(rec: FileRecord) -> None:
    try:
        db.session.execute(
            update(FileRecord)
            .where(FileRecord.id == rec.id)
            .values(last_accessed_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning("Não foi possível atualizar last_accessed_at de %s: %s", rec.id, e)


def download(requester_id: str | None, file_id: str) -> tuple[FileRecord, bytes]:
    rec = _load(file_id)
    if not _can_read(rec, requester_id):
        raise Forbidden()
    try:
        data = get_object_store().get(rec.object_key)
    except ObjectNotFound as e:
        raise InconsistentState(f"Objeto {rec.object_key} ausente no storage (arquivo {rec.id}).") from e
    _touch(rec)
    return rec, data


def list_files(owner_id: str) -> list[FileRecord]:
    return (FileRecord.query
            .filter_by(owner_id=owner_id)
            .order_by(FileRecord.uploaded_at.desc())
            .all())


def get_public_file(file_id: str) -> FileRecord:
    rec = db.session.get(FileRecord, file_id)
    if rec is None or not rec.is_public:
        raise NotFound("Não foi possível obter o arquivo.")
    return rec


def public_download_url(rec: FileRecord) -> str:
    """Link assinado de leitura direta no bucket, com validade limitada."""
    expires = int(current_app.config.get("PUBLIC_URL_EXPIRES_SECONDS", 3600))
    return get_object_store().presigned_url(rec.object_key, expires_in=expires)


def get_ledger(owner_id: str) -> CreditLedger:
    return ledger_svc.get_or_create_ledger(owner_id)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------
def delete(requester_id: str, file_id: str) -> None:
    rec = _load_owned(requester_id, file_id)
    record_id, owner_id, key, size = rec.id, rec.owner_id, rec.object_key, rec.size_bytes

    # storage primeiro; chave ausente conta como sucesso
    get_object_store().delete(key)

    removed = db.session.execute(
        sa_delete(FileRecord)
        .where(FileRecord.id == record_id)
        .execution_options(synchronize_session=False)
    ).rowcount
    if removed != 1:
        # outro delete concorrente já removeu; não desconta duas vezes
        db.session.rollback()
        raise NotFound()
    db.session.expunge(rec)
    ledger_svc.release_storage(owner_id, size)
    db.session.add(AuditLog(owner_id=owner_id, action="delete", ref=f"file:{record_id}", description=rec.display_name))
    db.session.commit()
    current_app.logger.info("Arquivo removido: %s owner=%s", key, owner_id)


# ---------------------------------------------------------------------------
# Visibilidade
# ---------------------------------------------------------------------------
def toggle_public(requester_id: str, file_id: str) -> FileRecord:
    rec = _load_owned(requester_id, file_id)
    rec.is_public = not bool(rec.is_public)
    db.session.add(rec)
    db.session.add(AuditLog(owner_id=rec.owner_id, action="toggle_public", ref=f"file:{rec.id}",
                            description="public" if rec.is_public else "private"))
    db.session.commit()
    return rec


# ---------------------------------------------------------------------------
# Upgrade de plano
# ---------------------------------------------------------------------------
def apply_verified_payment(owner_id: str, plan_tier: str, proof, commit: bool = True) -> CreditLedger:
    """Troca o plano (e o limite) a partir de um pagamento já verificado.

    Não mexe em storage_used_bytes nem em credits_remaining; os créditos da
    compra entram por `ledger.grant_credits` no mesmo evento.
    """
    from .payments import VerifiedPayment

    if not isinstance(proof, VerifiedPayment) or not proof.succeeded:
        raise ValidationError("Comprovante de pagamento inválido.")
    tier = get_plan(plan_tier)
    ledger_svc.get_or_create_ledger(owner_id)
    ledger_svc.set_plan(owner_id, tier)
    db.session.add(AuditLog(owner_id=owner_id, action="plan_upgrade", ref=f"order:{proof.order_id}",
                            description=tier.slug))
    if commit:
        db.session.commit()
    return ledger_svc.refresh_ledger(owner_id)
