from pydantic import BaseModel, ConfigDict

from .permissions import CONTENT_EDIT_ANY, CONTENT_READ_ALL


class AuthContext(BaseModel):
    """
    The authenticated caller of a request, with permissions resolved.

    Handlers receive it through ``get_auth_context`` or
    ``require_permission`` instead of reading identity from the request.
    """

    model_config = ConfigDict(frozen=True)

    subject: str
    email: str | None = None
    name: str | None = None
    role: str
    permissions: frozenset[str] = frozenset()

    def has(self, permission: str) -> bool:
        return permission in self.permissions

    def has_any(self, *permissions: str) -> bool:
        return any(p in self.permissions for p in permissions)

    @property
    def can_read_all(self) -> bool:
        return CONTENT_READ_ALL in self.permissions

    @property
    def can_edit_any(self) -> bool:
        return CONTENT_EDIT_ANY in self.permissions

    def owns(self, owner_id: str | None) -> bool:
        return owner_id is not None and owner_id == self.subject

    def can_modify(self, owner_id: str | None) -> bool:
        return self.can_edit_any or self.owns(owner_id)
