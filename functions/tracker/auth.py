"""
Bearer token verification against the identity provider's JWKS.
"""

from __future__ import annotations

import logging
import threading
from typing import Mapping, Optional, Protocol, Sequence

import jwt

from tracker.errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)


class TokenVerifier(Protocol):
    """Turns a bearer token into the caller's subject identifier."""

    def verify(self, token: str) -> str:
        ...


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("no Authorization header", public_message="Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("malformed Authorization header", public_message="Missing bearer token")
    return token


def normalize_issuer(issuer_base_url: str) -> str:
    return issuer_base_url if issuer_base_url.endswith("/") else issuer_base_url + "/"


class JwksTokenVerifier:
    """
    Validates RS256 tokens issued by ``issuer_base_url`` for ``audience``.

    The key set is fetched from ``<issuer>/.well-known/jwks.json`` on first use
    and cached by PyJWT for ``cache_lifespan`` seconds.
    """

    def __init__(
        self,
        issuer_base_url: Optional[str],
        audience: Optional[str],
        algorithms: Sequence[str] = ("RS256",),
        cache_lifespan: int = 300,
    ):
        self.issuer = normalize_issuer(issuer_base_url) if issuer_base_url else None
        self.audience = audience
        self.algorithms = list(algorithms)
        self.cache_lifespan = cache_lifespan
        self._jwks_client: Optional[jwt.PyJWKClient] = None
        self._lock = threading.Lock()

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}.well-known/jwks.json"

    def _get_jwks_client(self) -> jwt.PyJWKClient:
        if self._jwks_client is not None:
            return self._jwks_client
        with self._lock:
            if self._jwks_client is None:
                self._jwks_client = jwt.PyJWKClient(
                    self.jwks_url, cache_keys=True, lifespan=self.cache_lifespan
                )
        return self._jwks_client

    def verify(self, token: str) -> str:
        if not self.issuer or not self.audience:
            raise ConfigurationError("AUTH0_ISSUER_BASE_URL and AUTH0_AUDIENCE must be set")
        try:
            signing_key = self._get_jwks_client().get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.warning("token rejected: expired")
            raise AuthenticationError(str(exc), public_message="Token expired") from exc
        except jwt.PyJWTError as exc:
            logger.warning("token rejected: %s", exc)
            raise AuthenticationError(str(exc)) from exc
        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub:
            raise AuthenticationError("token has no usable sub claim")
        return sub


class StaticTokenVerifier:
    """Test double mapping fixed tokens to subjects."""

    def __init__(self, tokens: Mapping[str, str]):
        self.tokens = dict(tokens)

    def verify(self, token: str) -> str:
        sub = self.tokens.get(token)
        if sub is None:
            raise AuthenticationError("unknown token")
        return sub


def authenticate(authorization: Optional[str], verifier: TokenVerifier) -> str:
    """Return the subject for an Authorization header value."""
    return verifier.verify(extract_bearer_token(authorization))
