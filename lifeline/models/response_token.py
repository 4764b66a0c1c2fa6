import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from lifeline.db.base import Base
from lifeline.utils.clock import utcnow


class ResponseToken(Base):
    """Single-use credential tying a response link to one (request, donor) pair."""

    __tablename__ = "response_tokens"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    donor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # --- Relationships ---
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("blood_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    blood_request = relationship("BloodRequest", back_populates="response_tokens")
