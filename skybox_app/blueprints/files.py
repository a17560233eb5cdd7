# skybox_app/blueprints/files.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask import Blueprint, Response, g, jsonify, request
from werkzeug.utils import secure_filename

from ..decorators import login_optional, login_required
from ..errors import ValidationError
from ..services import lifecycle
from ..services.lifecycle import UploadPayload

bp = Blueprint("files", __name__, url_prefix="/files")


def _payloads_from_request() -> list[UploadPayload]:
    files = [f for f in request.files.getlist("files") if f and f.filename]
    if not files:
        raise ValidationError("Selecione ao menos um arquivo.")
    out = []
    for f in files:
        data = f.read()
        if not data:
            raise ValidationError(f"Arquivo vazio: {f.filename}")
        out.append(UploadPayload(data=data, filename=f.filename, content_type=f.mimetype or None))
    return out


@bp.route("/upload", methods=["POST"])
@login_required
def upload_files():
    records = lifecycle.upload_many(g.owner_id, _payloads_from_request())
    ledger = lifecycle.get_ledger(g.owner_id)
    return jsonify({
        "files": [r.to_dict() for r in records],
        "remainingCredits": ledger.credits_remaining,
    })

@bp.route("/my", methods=["GET"])
@login_required
def my_files():
    return jsonify([r.to_dict() for r in lifecycle.list_files(g.owner_id)])

@bp.route("/public/<file_id>", methods=["GET"])
def public_file(file_id: str):
    rec = lifecycle.get_public_file(file_id)
    return jsonify({**rec.to_dict(), "url": lifecycle.public_download_url(rec)})

@bp.route("/download/<file_id>", methods=["GET"])
@login_optional
def download(file_id: str):
    rec, data = lifecycle.download(g.owner_id, file_id)
    filename = secure_filename(rec.display_name) or "download"
    return Response(
        data,
        mimetype="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@bp.route("/<file_id>", methods=["DELETE"])
@login_required
def delete_file(file_id: str):
    lifecycle.delete(g.owner_id, file_id)
    return "", 204

@bp.route("/<file_id>/toggle-public", methods=["PATCH"])
@login_required
def toggle_public(file_id: str):
    return jsonify(lifecycle.toggle_public(g.owner_id, file_id).to_dict())
