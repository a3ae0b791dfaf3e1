import logging
import uuid
from typing import Any

from cms_authorization import AuthContext
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Activity

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"
DELETE = "delete"
PUBLISH = "publish"
UNPUBLISH = "unpublish"


async def record_activity(
    db: AsyncSession,
    auth: AuthContext,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    **metadata: Any,
) -> Activity:
    """
    Append one activity row to the caller's open transaction.

    The row is flushed, not committed, so it commits or rolls back together
    with the mutation it describes.

    Example:
        >>> await record_activity(db, auth, CREATE, "post", post.id, title=post.title)
    """
    activity = await Activity.objects.create(
        db,
        user_id=auth.subject,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta=metadata or None,
    )
    logger.info(
        "%s %s %s by %s", action, entity_type, entity_id, auth.subject
    )
    return activity
