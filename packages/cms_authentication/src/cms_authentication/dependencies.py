from cms_core.exceptions import UnauthorizedError
from fastapi import Request

from .schemas import AuthenticationResult, TokenClaims


def get_authentication_result(request: Request) -> AuthenticationResult:
    result = getattr(request.state, "auth", None)
    if result is None:
        return AuthenticationResult(
            success=False,
            message="Authentication is not configured",
            errors=["BearerAuthenticationMiddleware not installed"],
        )
    return result


async def get_token_claims(request: Request) -> TokenClaims:
    """FastAPI dependency returning verified claims or raising 401."""
    result = get_authentication_result(request)
    if not result.success or result.claims is None:
        raise UnauthorizedError(result.message or None)
    return result.claims
