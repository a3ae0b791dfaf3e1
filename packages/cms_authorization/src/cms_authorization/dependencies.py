from cms_authentication import TokenClaims, get_token_claims
from cms_core.exceptions import ForbiddenError
from fastapi import Depends, Request

from .context import AuthContext
from .policy import RolePolicy


def get_role_policy(request: Request) -> RolePolicy:
    policy = getattr(request.app.state, "role_policy", None)
    if policy is None:
        policy = RolePolicy.default()
        request.app.state.role_policy = policy
    return policy


async def get_auth_context(
    claims: TokenClaims = Depends(get_token_claims),
    policy: RolePolicy = Depends(get_role_policy),
) -> AuthContext:
    """FastAPI dependency resolving the caller's role and permissions."""
    role = policy.resolve_role(claims.role)
    return AuthContext(
        subject=claims.subject,
        email=claims.email,
        name=claims.name,
        role=role,
        permissions=policy.permissions_for(role),
    )


def require_permission(*permissions: str):
    """FastAPI dependency factory granting access if the caller holds any
    of ``permissions``.

    Example:
        >>> @router.post("/posts")
        ... async def create_post(
        ...     auth: AuthContext = Depends(require_permission("posts:create")),
        ... ): ...
    """

    async def permission_dependency(
        auth: AuthContext = Depends(get_auth_context),
    ) -> AuthContext:
        if not auth.has_any(*permissions):
            raise ForbiddenError()
        return auth

    return permission_dependency
