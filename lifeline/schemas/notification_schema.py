"""
Notification Schemas for hospital-facing events
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from lifeline.schemas.base_schema import NotificationType


class NotificationEvent(BaseModel):
    """Event handed to the event sink by the engine"""

    title: str = Field(..., max_length=255, description="Notification title")
    message: str = Field(..., max_length=500, description="Notification message")
    type: NotificationType = NotificationType.INFO
    hospital_id: Optional[UUID] = None
    request_id: Optional[UUID] = None
    donor_id: Optional[UUID] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class NotificationResponse(BaseModel):
    """Schema for notification response"""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Notification ID")
    hospital_id: Optional[UUID] = None
    request_id: Optional[UUID] = None
    donor_id: Optional[UUID] = None
    type: NotificationType
    title: str
    message: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = Field(..., description="Read status")
    created_at: datetime = Field(..., description="Creation timestamp")


class NotificationReadAllResponse(BaseModel):
    success: bool = True
    modified: int
