import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from cms_core.config import CMSSettings
from pydantic import TypeAdapter, ValidationError

from .permissions import ALL_PERMISSIONS, DEFAULT_ROLE_PERMISSIONS

logger = logging.getLogger(__name__)

_policy_adapter = TypeAdapter(dict[str, list[str]])


class PolicyConfigurationError(ValueError):
    """Raised when a role policy source cannot be parsed."""


class RolePolicy:
    """
    Role to permission mapping.

    A missing role falls back to ``default_role``; a role the policy does not
    know has no permissions at all.

    Example:
        >>> policy = RolePolicy.default()
        >>> "posts:publish" in policy.permissions_for("editor")
        True
        >>> policy.permissions_for("guest")
        frozenset()
    """

    def __init__(
        self,
        roles: Mapping[str, Iterable[str]],
        *,
        default_role: str = "author",
    ):
        self._roles: dict[str, frozenset[str]] = {
            role: frozenset(perms) for role, perms in roles.items()
        }
        self.default_role = default_role

        unknown = set().union(*self._roles.values()) - ALL_PERMISSIONS
        if unknown:
            logger.warning(
                "Role policy grants unrecognised permissions: %s",
                ", ".join(sorted(unknown)),
            )
        if default_role not in self._roles:
            logger.warning(
                "Default role '%s' is not defined; tokens without a role "
                "will have no permissions",
                default_role,
            )

    @property
    def roles(self) -> tuple[str, ...]:
        return tuple(self._roles)

    def resolve_role(self, role: str | None) -> str:
        return role or self.default_role

    def permissions_for(self, role: str | None) -> frozenset[str]:
        return self._roles.get(self.resolve_role(role), frozenset())

    def as_dict(self) -> dict[str, list[str]]:
        return {role: sorted(perms) for role, perms in self._roles.items()}

    @classmethod
    def default(cls, *, default_role: str = "author") -> "RolePolicy":
        return cls(DEFAULT_ROLE_PERMISSIONS, default_role=default_role)

    @classmethod
    def from_file(cls, path: str | Path, *, default_role: str = "author") -> "RolePolicy":
        """
        Load a policy from a JSON object of ``{"role": ["perm", ...]}``.

        Raises:
            PolicyConfigurationError: If the file is missing or malformed.
        """
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            roles = _policy_adapter.validate_python(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            msg = f"Cannot load role policy from {path}: {e}"
            raise PolicyConfigurationError(msg) from e
        return cls(roles, default_role=default_role)

    @classmethod
    def from_settings(cls, settings: CMSSettings) -> "RolePolicy":
        """
        Resolve the policy from ``ROLE_POLICY_FILE``, then ``ROLE_PERMISSIONS``,
        then the built-in table.
        """
        if settings.ROLE_POLICY_FILE:
            logger.info("Loading role policy from %s", settings.ROLE_POLICY_FILE)
            return cls.from_file(
                settings.ROLE_POLICY_FILE, default_role=settings.DEFAULT_ROLE
            )
        if settings.ROLE_PERMISSIONS is not None:
            logger.info("Loading role policy from ROLE_PERMISSIONS")
            return cls(settings.ROLE_PERMISSIONS, default_role=settings.DEFAULT_ROLE)
        return cls.default(default_role=settings.DEFAULT_ROLE)
