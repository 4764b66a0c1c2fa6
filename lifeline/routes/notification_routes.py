import asyncio
import json
from datetime import datetime, timezone
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from lifeline.dependencies import get_db
from lifeline.models.notification import Notification
from lifeline.schemas.notification_schema import (
    NotificationReadAllResponse,
    NotificationResponse,
)
from lifeline.services.notification_sse import manager
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/notifications", tags=["Notifications"])

HEARTBEAT_SECONDS = 30.0


@router.get("/stream/{hospital_id}")
async def stream_notifications(hospital_id: UUID, request: Request):
    """
    SSE stream of a hospital's events (batch sends, confirmations,
    fulfilment). Sends a comment line as heartbeat when idle.
    """
    subscriber_id = str(hospital_id)
    event_queue = await manager.add_sse_connection(subscriber_id)

    logger.info(
        f"SSE connection established for hospital {subscriber_id}",
        extra={
            "extra_fields": {
                "event_type": "sse_connection_established",
                "hospital_id": subscriber_id,
            }
        },
    )

    async def event_stream():
        try:
            connection_event = {
                "type": "connection_established",
                "message": "Successfully connected to notification stream",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "hospital_id": subscriber_id,
            }
            yield f"data: {json.dumps(connection_event)}\n\n"

            while True:
                if await request.is_disconnected():
                    logger.info(
                        f"SSE client {subscriber_id} disconnected",
                        extra={
                            "extra_fields": {
                                "event_type": "sse_client_disconnected",
                                "hospital_id": subscriber_id,
                            }
                        },
                    )
                    break

                try:
                    event = await asyncio.wait_for(
                        event_queue.get(), timeout=HEARTBEAT_SECONDS
                    )
                    yield f"data: {json.dumps(event)}\n\n"
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"

        except asyncio.CancelledError:
            logger.info(f"SSE stream cancelled for hospital {subscriber_id}")
            raise
        finally:
            await manager.disconnect_sse(subscriber_id, event_queue)
            logger.info(
                f"SSE connection closed for hospital {subscriber_id}",
                extra={
                    "extra_fields": {
                        "event_type": "sse_connection_closed",
                        "hospital_id": subscriber_id,
                    }
                },
            )

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.get("/sse/stats")
async def get_sse_stats():
    """SSE connection statistics for monitoring."""
    return {
        "success": True,
        "stats": manager.get_stats(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/{hospital_id}", response_model=List[NotificationResponse])
async def get_hospital_notifications(
    hospital_id: UUID,
    unread_only: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Events recorded for a hospital, newest first."""
    query = select(Notification).where(Notification.hospital_id == hospital_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc())

    result = await db.execute(query)
    notifications = result.scalars().all()

    logger.debug(
        f"Retrieved {len(notifications)} notifications for hospital {hospital_id}",
        extra={
            "extra_fields": {
                "event_type": "notifications_retrieved",
                "hospital_id": str(hospital_id),
                "count": len(notifications),
            }
        },
    )
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID, db: AsyncSession = Depends(get_db)
):
    notification = await db.get(Notification, notification_id)
    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )

    notification.mark_as_read()
    await db.commit()
    await db.refresh(notification)
    return NotificationResponse.model_validate(notification)


@router.post(
    "/hospital/{hospital_id}/read-all", response_model=NotificationReadAllResponse
)
async def mark_all_notifications_read(
    hospital_id: UUID, db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        update(Notification)
        .where(
            Notification.hospital_id == hospital_id,
            Notification.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info(
        f"Marked {result.rowcount} notifications read for hospital {hospital_id}",
        extra={
            "extra_fields": {
                "event_type": "notifications_marked_read",
                "hospital_id": str(hospital_id),
                "modified": result.rowcount,
            }
        },
    )
    return NotificationReadAllResponse(modified=result.rowcount)
