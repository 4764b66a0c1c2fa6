import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from lifeline.db.base import Base
from lifeline.utils.clock import utcnow
from lifeline.schemas.base_schema import BloodGroup, RequestStatus, Urgency


class BloodRequest(Base):
    """A hospital's request for donors of one blood group."""

    __tablename__ = "blood_requests"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    hospital_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, nullable=True, index=True
    )
    hospital_name: Mapped[str] = mapped_column(String(255), nullable=False)

    blood_group: Mapped[BloodGroup] = mapped_column(
        Enum(BloodGroup), nullable=False, index=True
    )
    quantity_needed: Mapped[int] = mapped_column(Integer, nullable=False)
    urgency: Mapped[Urgency] = mapped_column(Enum(Urgency), nullable=False)
    required_by: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    patient_age: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    patient_condition: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus),
        default=RequestStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    confirmed_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(
        String(200), nullable=True
    )

    # --- Batch notification state ---
    batch_size: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    response_window_minutes: Mapped[int] = mapped_column(
        Integer, default=2, nullable=False
    )
    notified_donor_ids: Mapped[List[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    remaining_donor_queue: Mapped[List[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    batch_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    batch_in_progress: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    # Bumped by every batch claim; compare-and-set token for queue mutation
    queue_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    # --- Relationships ---
    response_tokens = relationship(
        "ResponseToken",
        back_populates="blood_request",
        cascade="all, delete-orphan",
    )

    # --- Validation Methods ---
    @validates("quantity_needed", "batch_size", "response_window_minutes")
    def validate_positive(self, key, value):
        if value is None or value < 1:
            raise ValueError(f"{key} must be at least 1")
        return value

    # --- Methods ---
    @property
    def remaining_units(self) -> int:
        return max(0, self.quantity_needed - (self.confirmed_units or 0))

    @property
    def is_quota_met(self) -> bool:
        return (self.confirmed_units or 0) >= self.quantity_needed

    def is_past_deadline(self, now: datetime) -> bool:
        return now > self.required_by

    def __repr__(self) -> str:
        return (
            f"<BloodRequest(id={self.id}, blood_group={self.blood_group}, "
            f"status={self.status}, confirmed={self.confirmed_units}/{self.quantity_needed})>"
        )

    # --- Table Configuration ---
    __table_args__ = (
        Index("idx_request_status_batch", "status", "batch_in_progress"),
        Index("idx_request_hospital_status", "hospital_id", "status"),
        Index("idx_request_status_deadline", "status", "required_by"),
    )
