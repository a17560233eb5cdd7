# skybox_app/errors.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask import jsonify, current_app


class SkyBoxError(Exception):
    """Erro tipado devolvido ao cliente; cada tipo carrega status HTTP e código."""
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Erro interno."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(SkyBoxError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Requisição inválida."


class Unauthenticated(SkyBoxError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Token ausente ou inválido."


class Forbidden(SkyBoxError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Sem permissão para este arquivo."


class NotFound(SkyBoxError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Arquivo não encontrado."


class InconsistentState(NotFound):
    """Metadado aponta para um objeto ausente no storage (ou vice-versa).

    Para o cliente é um NotFound; internamente é logado com o próprio código
    para alertas operacionais.
    """
    internal_code = "INCONSISTENT_STATE"


class InsufficientCredits(SkyBoxError):
    status_code = 402
    code = "INSUFFICIENT_CREDITS"
    default_message = "Créditos insuficientes. Adquira mais créditos para enviar arquivos."


class QuotaExceeded(SkyBoxError):
    status_code = 413
    code = "QUOTA_EXCEEDED"
    default_message = "Limite de armazenamento do plano excedido."


class ExternalStoreFailure(SkyBoxError):
    status_code = 502
    code = "EXTERNAL_STORE_FAILURE"
    default_message = "Falha ao comunicar com serviço externo."


def register_error_handlers(app):
    @app.errorhandler(SkyBoxError)
    def _handle_skybox_error(err: SkyBoxError):
        if isinstance(err, InconsistentState):
            current_app.logger.error("%s: %s", err.internal_code, err.message)
        elif err.status_code >= 500:
            current_app.logger.error("%s: %s", err.code, err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(413)
    def _handle_too_large(_err):
        return jsonify({"error": "PAYLOAD_TOO_LARGE", "message": "Requisição maior que o permitido."}), 413
