# providers/notification_dispatcher.py
"""
Notification dispatcher - persists in-app notifications for members.
"""
import logging
from typing import Optional

from core.db import get_db_session_ctx
from models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Writes Notification rows in their own session."""

    async def notify(self, member_id: int, template_kind: str, context: Optional[dict] = None) -> int:
        """
        Create an in-app notification.

        Returns:
            notificationID of the new row
        """
        with get_db_session_ctx() as session:
            notification = Notification(
                memberID=member_id,
                templateKind=template_kind,
                context=context or {},
                status="pending"
            )
            session.add(notification)
            session.flush()
            notificationId = notification.notificationID

        logger.info(f"Notification {notificationId} created: member={member_id}, kind={template_kind}")
        return notificationId
