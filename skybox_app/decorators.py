# skybox_app/decorators.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from functools import wraps
from flask import g, request

from .errors import Unauthenticated
from .services.identity import bearer_token, get_token_verifier
from .services.profiles import sync_profile


def _authenticate(token: str):
    identity = get_token_verifier().verify(token)
    g.identity = identity
    g.owner_id = identity.subject
    g.profile = sync_profile(identity)
    return identity


def login_required(view_func):
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        token = bearer_token(request.headers.get("Authorization"))
        if not token:
            raise Unauthenticated()
        _authenticate(token)
        return view_func(*args, **kwargs)
    return wrapper

def login_optional(view_func):
    """Autentica se houver token; sem token segue como anônimo (g.owner_id = None)."""
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        g.identity = None
        g.owner_id = None
        token = bearer_token(request.headers.get("Authorization"))
        if token:
            _authenticate(token)
        return view_func(*args, **kwargs)
    return wrapper
