# skybox_app/models/profile.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime
from ..extensions import db

class Profile(db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True)
    clerk_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(180), index=True)
    first_name = db.Column(db.String(120))
    last_name = db.Column(db.String(120))
    photo_url = db.Column(db.String(512))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "clerkId": self.clerk_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "photoUrl": self.photo_url,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
