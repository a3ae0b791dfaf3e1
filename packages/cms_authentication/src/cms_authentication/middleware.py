import logging
from typing import Any, Awaitable, Callable, Final

from starlette.requests import Request
from starlette.types import ASGIApp

from .backend import MISSING_TOKEN_MESSAGE, AuthenticationBackend
from .schemas import AuthenticationResult

logger = logging.getLogger(__name__)


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class BearerAuthenticationMiddleware:
    """Verify the bearer token once per request.

    The outcome is stored on ``request.state.auth`` as an
    ``AuthenticationResult``; rejecting unauthenticated requests is left to
    the ``get_token_claims`` dependency so public routes stay reachable.
    """

    def __init__(self, app: ASGIApp, backend: AuthenticationBackend):
        self.app: Final[ASGIApp] = app
        self.backend: Final[AuthenticationBackend] = backend

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[[], Awaitable[Any]],
        send,
    ) -> Any:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return None
        request = Request(scope)

        token = bearer_token(request.headers.get("authorization"))
        if token is None:
            result = AuthenticationResult(
                success=False,
                message=MISSING_TOKEN_MESSAGE,
                errors=["Authorization header missing or not a bearer token"],
            )
        else:
            try:
                result = await self.backend.authenticate(token)
            except Exception:
                logger.exception(
                    "Authentication middleware encountered an unexpected error"
                )
                result = AuthenticationResult(
                    success=False,
                    message="Invalid or expired token",
                    errors=["Backend raised"],
                )
            if not result.success:
                logger.debug(
                    "Authentication failed for token ending in ...%s: %s",
                    token[-4:],
                    "; ".join(result.errors) or result.message,
                )

        request.state.auth = result
        return await self.app(scope, receive, send)
