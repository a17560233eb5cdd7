# skybox_app/models/file.py
# -*- coding: utf-8 -*-
from __future__ import annotations
import uuid
from datetime import datetime
from ..extensions import db

def _new_id() -> str:
    return uuid.uuid4().hex

class FileRecord(db.Model):
    __tablename__ = "file_records"
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    owner_id = db.Column(db.String(64), index=True, nullable=False)        # clerk id
    object_key = db.Column(db.String(512), unique=True, nullable=False)    # chave no R2
    display_name = db.Column(db.String(255), nullable=False)
    size_bytes = db.Column(db.BigInteger, nullable=False)
    content_type = db.Column(db.String(255), nullable=False, default="application/octet-stream")
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    uploaded_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    last_accessed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "fileLocation": self.object_key,
            "size": self.size_bytes,
            "type": self.content_type,
            "clerkId": self.owner_id,
            "isPublic": bool(self.is_public),
            "uploadedAt": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), index=True, nullable=False)
    action = db.Column(db.String(80), nullable=False)   # upload, delete, toggle_public, plan_upgrade
    ref = db.Column(db.String(120))                     # e.g., file:<id> / order:<id>
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
