"""
Request-scoped access rules: content visibility, ownership and user
provisioning.
"""

import logging
from typing import Any

from cms_authorization import AuthContext
from cms_authorization.policy import RolePolicy
from cms_core.exceptions import ForbiddenError
from cms_db import UniqueViolationError
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from .models import STATUS_PUBLISHED, Role, User

logger = logging.getLogger(__name__)


def visibility_clause(auth: AuthContext, model: Any) -> ColumnElement[bool] | None:
    """
    Rows the caller may read: everything with ``content:read_all``,
    otherwise published rows plus the caller's own.
    """
    if auth.can_read_all:
        return None
    return or_(model.status == STATUS_PUBLISHED, model.author_id == auth.subject)


def is_visible(auth: AuthContext, obj: Any) -> bool:
    return (
        auth.can_read_all
        or obj.status == STATUS_PUBLISHED
        or obj.author_id == auth.subject
    )


def ownership_clause(auth: AuthContext, column: Any) -> ColumnElement[bool] | None:
    """Restrict aggregate views to the caller's own rows unless they read all."""
    if auth.can_read_all:
        return None
    return column == auth.subject


def ensure_can_modify(
    auth: AuthContext, owner_id: str | None, noun: str, action: str = "edit"
) -> None:
    """
    Raises:
        ForbiddenError: If the caller neither owns the resource nor holds
            ``content:edit_any``.
    """
    if not auth.can_modify(owner_id):
        raise ForbiddenError(f"You can only {action} your own {noun}")


def display_name(auth: AuthContext) -> str:
    if auth.name:
        return auth.name
    if auth.email:
        return auth.email.split("@", 1)[0]
    return auth.subject


async def _ensure_role(db: AsyncSession, auth: AuthContext) -> Role:
    role, _ = await Role.objects.get_or_create(
        db, name=auth.role, defaults={"permissions": sorted(auth.permissions)}
    )
    return role


async def _provision_user(db: AsyncSession, auth: AuthContext) -> User:
    role = await _ensure_role(db, auth)
    user = await User.objects.get_by_pk(db, auth.subject)
    if user is None:
        return await User.objects.create(
            db,
            id=auth.subject,
            email=auth.email,
            name=display_name(auth),
            role_id=role.id,
        )

    if auth.email and user.email != auth.email:
        user.email = auth.email
    if user.role_id != role.id:
        user.role_id = role.id
    if auth.name and user.name != auth.name:
        user.name = auth.name
    return user


async def ensure_user(db: AsyncSession, auth: AuthContext) -> User:
    """
    Return the caller's ``User`` row, creating or refreshing it from the
    token claims. Called before any write that references the caller.

    Must run before other pending work in the session: losing a concurrent
    first-write race on either the role or the user rolls the session back,
    and provisioning runs once more against the winner's rows.
    """
    try:
        return await _provision_user(db, auth)
    except UniqueViolationError:
        logger.info("Concurrent provisioning of user %s; retrying", auth.subject)
        return await _provision_user(db, auth)


async def sync_roles(db: AsyncSession, policy: RolePolicy) -> None:
    """Mirror the loaded role policy into the ``roles`` table."""
    existing = {r.name: r for r in await Role.objects.all().fetch(db)}
    for name, permissions in policy.as_dict().items():
        role = existing.get(name)
        if role is None:
            await Role.objects.create(db, name=name, permissions=permissions)
        elif sorted(role.permissions or []) != permissions:
            role.permissions = permissions
    await db.commit()
