import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from lifeline.db.base import Base
from lifeline.utils.clock import utcnow


class Donor(Base):
    """Directory entry for a donor. The request engine only reads these."""

    __tablename__ = "donors"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Stored normalized: no whitespace, upper case
    blood_group: Mapped[str] = mapped_column(String(5), nullable=False)
    last_donation_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __str__(self) -> str:
        return f"Donor({self.name}, {self.blood_group})"

    __table_args__ = (Index("idx_donor_blood_group", "blood_group"),)
