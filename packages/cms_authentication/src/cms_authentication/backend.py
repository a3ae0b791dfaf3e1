import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import jwt
from cms_core.config import CMSSettings
from starlette.concurrency import run_in_threadpool

from .schemas import AuthenticationResult, TokenClaims

logger = logging.getLogger(__name__)

MISSING_TOKEN_MESSAGE = "Missing or invalid authorization header"
INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class AuthenticationBackend(ABC):
    @abstractmethod
    async def authenticate(self, token: str) -> AuthenticationResult: ...


def _lookup(payload: dict[str, Any], path: str) -> Any:
    """Resolve a dotted claim path such as ``app_metadata.role``."""
    value: Any = payload
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class JWTAuthenticationBackend(AuthenticationBackend):
    """Verify bearer JWTs issued by an external identity provider.

    HMAC tokens (``HS*``) are checked against the shared ``secret``. Any other
    algorithm is checked against the identity provider's JWKS, with the key
    picked by the token's ``kid``. ``sub`` and ``exp`` are always required;
    issuer and audience are checked only when configured.
    """

    def __init__(
        self,
        *,
        secret: str | None = None,
        algorithms: Sequence[str] = ("HS256",),
        issuer: str | None = None,
        audience: str | None = None,
        role_claim: str = "role",
        jwks_url: str | None = None,
        jwks_cache_seconds: int = 300,
        jwks_client: jwt.PyJWKClient | None = None,
        leeway: int = 0,
    ):
        self.secret = secret or None
        self.algorithms = list(algorithms)
        self.issuer = issuer
        self.audience = audience
        self.role_claim = role_claim
        self.leeway = leeway
        if jwks_client is None and jwks_url:
            jwks_client = jwt.PyJWKClient(jwks_url, lifespan=jwks_cache_seconds)
        self.jwks_client = jwks_client

    @classmethod
    def from_settings(cls, settings: CMSSettings) -> "JWTAuthenticationBackend":
        return cls(
            secret=settings.JWT_SECRET,
            algorithms=settings.JWT_ALGORITHMS,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            role_claim=settings.JWT_ROLE_CLAIM,
            jwks_url=settings.JWKS_URL,
            jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
        )

    async def _signing_key(self, token: str, algorithm: str) -> Any:
        if algorithm.startswith("HS"):
            if self.secret is None:
                msg = "No shared secret configured for HMAC tokens"
                raise jwt.InvalidKeyError(msg)
            return self.secret
        if self.jwks_client is None:
            msg = "No JWKS configured for asymmetric tokens"
            raise jwt.InvalidKeyError(msg)
        # PyJWKClient fetches over the network with urllib
        signing_key = await run_in_threadpool(
            self.jwks_client.get_signing_key_from_jwt, token
        )
        return signing_key.key

    def claims_from_payload(self, payload: dict[str, Any]) -> TokenClaims:
        name = _as_str(payload.get("name")) or _as_str(
            _lookup(payload, "user_metadata.name")
        )
        return TokenClaims(
            subject=str(payload["sub"]),
            email=_as_str(payload.get("email")),
            role=_as_str(_lookup(payload, self.role_claim)),
            name=name,
            payload=payload,
        )

    async def authenticate(self, token: str) -> AuthenticationResult:
        """Verify ``token`` and decode its claims.

        Returns:
            AuthenticationResult: Always returns a result object; failures
            carry a client-safe ``message`` and the reason in ``errors``.

        """
        if not token:
            return AuthenticationResult(
                success=False,
                message=MISSING_TOKEN_MESSAGE,
                errors=["Empty bearer token"],
            )

        try:
            header = jwt.get_unverified_header(token)
            algorithm = header.get("alg", "")
            if algorithm not in self.algorithms:
                msg = f"Algorithm '{algorithm}' is not allowed"
                raise jwt.InvalidAlgorithmError(msg)

            key = await self._signing_key(token, algorithm)
            payload = jwt.decode(
                token,
                key,
                algorithms=[algorithm],
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.leeway,
                options={
                    "require": ["sub", "exp"],
                    "verify_aud": self.audience is not None,
                },
            )
        except jwt.ExpiredSignatureError:
            return AuthenticationResult(
                success=False,
                message=INVALID_TOKEN_MESSAGE,
                errors=["Token has expired"],
            )
        except jwt.PyJWTError as e:
            return AuthenticationResult(
                success=False,
                message=INVALID_TOKEN_MESSAGE,
                errors=[f"{type(e).__name__}: {e}"],
            )

        return AuthenticationResult(
            success=True,
            claims=self.claims_from_payload(payload),
            message="Authenticated",
        )
