import uuid
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import JSON, Boolean, DateTime, Enum, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from lifeline.db.base import Base
from lifeline.utils.clock import utcnow
from lifeline.schemas.base_schema import NotificationType


class Notification(Base):
    __tablename__ = "notifications"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    hospital_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, nullable=True, index=True
    )
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, nullable=True, index=True
    )
    donor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType), default=NotificationType.INFO, nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    meta: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, index=True
    )

    # --- Methods ---
    def __str__(self) -> str:
        return f"Notification({self.title}, {self.message}, Read: {self.is_read})"

    def mark_as_read(self):
        self.is_read = True
