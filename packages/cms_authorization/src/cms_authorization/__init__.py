from .context import AuthContext
from .dependencies import get_auth_context, get_role_policy, require_permission
from .policy import PolicyConfigurationError, RolePolicy

__all__ = [
    "AuthContext",
    "PolicyConfigurationError",
    "RolePolicy",
    "get_auth_context",
    "get_role_policy",
    "require_permission",
]
