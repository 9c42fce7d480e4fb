"""
Notification service for in-app user notifications.
Notifications are side effects: failures are logged and never raised.
"""

from typing import Optional

import structlog

from models.records import Notification
from services.backend import Backend
from utils.helpers import format_naira

logger = structlog.get_logger(__name__)


class NotificationService:
    """Service for writing rows to the notifications table."""

    table = "notifications"

    async def notify(self, backend: Backend, notification: Notification) -> Optional[dict]:
        """
        Insert a notification.

        Returns:
            The stored row, or None if the insert failed
        """
        try:
            row = await backend.insert(self.table, notification.model_dump())
            logger.info(
                "notification_created",
                notification_type=notification.type,
                user_id=notification.user_id,
            )
            return row

        except Exception as e:
            logger.error(
                "notification_create_error",
                notification_type=notification.type,
                user_id=notification.user_id,
                error=str(e),
            )
            return None

    async def notify_payment_success(self, backend: Backend, user_id: Optional[str], amount_kobo: int) -> Optional[dict]:
        """Tell a user their payment went through."""
        return await self.notify(
            backend,
            Notification(
                title="Payment Successful",
                description=f"Your payment of {format_naira(amount_kobo)} was successful.",
                type="payment_success",
                user_id=user_id,
            ),
        )


# Singleton instance
notification_service = NotificationService()
