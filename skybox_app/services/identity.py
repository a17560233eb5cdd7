# skybox_app/services/identity.py
# -*- coding: utf-8 -*-
"""Verificação dos JWTs emitidos pelo Clerk contra o JWKS publicado."""
from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import jwt
import requests
from flask import current_app
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    ImmatureSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    MissingRequiredClaimError,
    PyJWKError,
    PyJWKSetError,
)

from ..errors import Unauthenticated

logger = logging.getLogger(__name__)

ALGORITHMS = ["RS256"]


@dataclass(frozen=True)
class VerifiedIdentity:
    subject: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    photo_url: str | None = None
    claims: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_claims(cls, claims: dict) -> "VerifiedIdentity":
        return cls(
            subject=claims["sub"],
            email=claims.get("email"),
            first_name=claims.get("first_name"),
            last_name=claims.get("last_name"),
            photo_url=claims.get("image_url"),
            claims=dict(claims),
        )


class JWKSCache:
    """Conjunto de chaves públicas com validade de `ttl` segundos.

    Começa vazio e é populado na primeira verificação. Cada refresh troca o
    dicionário inteiro de uma vez; leitores nunca veem um conjunto parcial.
    Se o fetch falha, continua servindo as chaves antigas.
    """

    def __init__(self, jwks_url: str, ttl: int = 3600, *, http_timeout: int = 10,
                 unknown_kid_cooldown: int = 60,
                 clock: Callable[[], float] = time.monotonic,
                 fetcher: Callable[[str, int], dict] | None = None):
        self.jwks_url = jwks_url
        self.ttl = ttl
        self.http_timeout = http_timeout
        self.unknown_kid_cooldown = unknown_kid_cooldown
        self._clock = clock
        self._fetcher = fetcher or _http_fetch
        self._keys: dict[str, Any] = {}
        self._fetched_at: float | None = None
        self._last_attempt: float | None = None
        self._lock = threading.Lock()

    @property
    def key_ids(self) -> list[str]:
        return sorted(self._keys)

    def is_expired(self) -> bool:
        return self._fetched_at is None or (self._clock() - self._fetched_at) >= self.ttl

    def refresh(self, *, on_demand: bool = False, if_expired: bool = False) -> bool:
        """Busca o JWKS e substitui o cache. False se o fetch falhou ou foi pulado.

        Chamadas vindas de requests usam `on_demand`: no máximo uma tentativa a
        cada `unknown_kid_cooldown` segundos, mesmo com o provedor fora do ar.
        Com `if_expired`, quem esperou o lock não busca de novo se outra thread
        já renovou o cache.
        """
        with self._lock:
            if if_expired and not self.is_expired():
                return True
            if on_demand and not self._can_refresh_on_demand():
                return False
            self._last_attempt = self._clock()
            try:
                jwks = jwt.PyJWKSet.from_dict(self._fetcher(self.jwks_url, self.http_timeout))
            except (requests.RequestException, ValueError, PyJWKSetError, PyJWKError) as e:
                logger.warning("Falha ao buscar JWKS em %s: %s (mantendo %d chave(s))",
                               self.jwks_url, e, len(self._keys))
                return False
            self._keys = {k.key_id: k.key for k in jwks.keys if k.key_id}
            self._fetched_at = self._clock()
        logger.info("JWKS atualizado: %d chave(s)", len(self._keys))
        return True

    def get_key(self, kid: str):
        refreshed = False
        if self.is_expired():
            refreshed = self.refresh(on_demand=True, if_expired=True)
        key = self._keys.get(kid)
        if key is None and not refreshed:
            # kid desconhecido: a chave pode ter sido rotacionada
            self.refresh(on_demand=True)
            key = self._keys.get(kid)
        return key

    def _can_refresh_on_demand(self) -> bool:
        if self._last_attempt is None:
            return True
        return (self._clock() - self._last_attempt) >= self.unknown_kid_cooldown


def _http_fetch(url: str, timeout: int) -> dict:
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


class ClerkTokenVerifier:
    def __init__(self, cache: JWKSCache, *, issuer: str = "", authorized_parties: list[str] | None = None,
                 leeway: int = 0):
        self.cache = cache
        self.issuer = issuer or None
        self.authorized_parties = list(authorized_parties or [])
        self.leeway = leeway

    def verify(self, token: str | None) -> VerifiedIdentity:
        if not token:
            raise Unauthenticated()
        try:
            header = jwt.get_unverified_header(token)
        except DecodeError as e:
            raise Unauthenticated("Token mal formado.") from e

        kid = header.get("kid")
        if not kid:
            raise Unauthenticated("Token sem kid.")
        key = self.cache.get_key(kid)
        if key is None:
            raise Unauthenticated("Chave de assinatura desconhecida.")

        try:
            claims = jwt.decode(
                token,
                key=key,
                algorithms=ALGORITHMS,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["exp", "sub"], "verify_aud": False},
            )
        except ExpiredSignatureError as e:
            raise Unauthenticated("Token expirado.") from e
        except ImmatureSignatureError as e:
            raise Unauthenticated("Token ainda não é válido.") from e
        except InvalidIssuerError as e:
            raise Unauthenticated("Emissor do token inválido.") from e
        except InvalidSignatureError as e:
            raise Unauthenticated("Assinatura do token inválida.") from e
        except MissingRequiredClaimError as e:
            raise Unauthenticated(f"Token sem claim obrigatória: {e.claim}") from e
        except InvalidTokenError as e:
            raise Unauthenticated("Token inválido.") from e

        azp = claims.get("azp")
        if self.authorized_parties and azp not in self.authorized_parties:
            raise Unauthenticated("Origem do token não autorizada.")
        return VerifiedIdentity.from_claims(claims)


def bearer_token(auth_header: str | None) -> str | None:
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def init_identity(app):
    cache = JWKSCache(app.config.get("CLERK_JWKS_URL", ""), ttl=int(app.config.get("JWKS_CACHE_TTL_SECONDS", 3600)))
    app.extensions["jwks_cache"] = cache
    app.extensions["token_verifier"] = ClerkTokenVerifier(
        cache,
        issuer=app.config.get("CLERK_ISSUER", ""),
        authorized_parties=app.config.get("CLERK_AUTHORIZED_PARTIES") or [],
        leeway=int(app.config.get("JWT_LEEWAY_SECONDS", 0)),
    )

def get_token_verifier():
    return current_app.extensions["token_verifier"]
