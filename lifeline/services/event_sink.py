import json
from datetime import timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lifeline.database import async_session
from lifeline.models.notification import Notification
from lifeline.schemas.notification_schema import NotificationEvent, NotificationResponse
from lifeline.services.notification_sse import ConnectionManager, manager
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)


class EventSink:
    """
    Records hospital-facing events and pushes them to live dashboards.

    Publishing is fire-and-forget: a failure is logged and never reaches
    the caller.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = async_session,
        connections: Optional[ConnectionManager] = None,
    ):
        self.session_factory = session_factory
        self.connections = connections or manager

    async def publish(self, event: NotificationEvent) -> Optional[Notification]:
        try:
            async with self.session_factory() as session:
                notification = Notification(
                    hospital_id=event.hospital_id,
                    request_id=event.request_id,
                    donor_id=event.donor_id,
                    type=event.type,
                    title=event.title,
                    message=event.message,
                    meta=json.loads(json.dumps(event.meta, default=str)),
                )
                session.add(notification)
                await session.commit()

            payload = NotificationResponse.model_validate(notification).model_dump(
                mode="json"
            )
            payload["timestamp"] = (
                notification.created_at.replace(tzinfo=timezone.utc).isoformat()
            )

            if event.hospital_id is not None:
                await self.connections.send_personal_message(
                    str(event.hospital_id), payload
                )
            else:
                await self.connections.broadcast(payload)

            return notification

        except Exception as e:
            logger.error(
                f"Failed to publish notification '{event.title}': {str(e)}",
                extra={
                    "extra_fields": {
                        "event_type": "notification_publish_failed",
                        "request_id": str(event.request_id) if event.request_id else None,
                    }
                },
            )
            return None
