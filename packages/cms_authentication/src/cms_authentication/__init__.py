from .backend import AuthenticationBackend, JWTAuthenticationBackend
from .dependencies import get_authentication_result, get_token_claims
from .middleware import BearerAuthenticationMiddleware, bearer_token
from .schemas import AuthenticationResult, TokenClaims

__all__ = [
    "AuthenticationBackend",
    "AuthenticationResult",
    "BearerAuthenticationMiddleware",
    "JWTAuthenticationBackend",
    "TokenClaims",
    "bearer_token",
    "get_authentication_result",
    "get_token_claims",
]
