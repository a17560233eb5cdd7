# skybox_app/services/profiles.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Profile
from .identity import VerifiedIdentity


def sync_profile(identity: VerifiedIdentity) -> Profile:
    """Cria o perfil no primeiro acesso e atualiza campos vindos do token."""
    p = Profile.query.filter_by(clerk_id=identity.subject).first()
    if p is None:
        p = Profile(clerk_id=identity.subject)
        db.session.add(p)

    changed = p.id is None
    for attr, value in (("email", identity.email), ("first_name", identity.first_name),
                        ("last_name", identity.last_name), ("photo_url", identity.photo_url)):
        if value and getattr(p, attr) != value:
            setattr(p, attr, value)
            changed = True
    if not changed:
        return p
    try:
        db.session.commit()
    except IntegrityError:
        # primeiro acesso concorrente do mesmo usuário
        db.session.rollback()
        p = Profile.query.filter_by(clerk_id=identity.subject).one()
    return p
