from pydantic import BaseModel, Field, field_validator, ConfigDict, StringConstraints
from uuid import UUID
from datetime import datetime
from typing import List, Literal, Optional, Annotated
import logging

from lifeline.config import settings
from lifeline.schemas.base_schema import BaseSchema, BloodGroup, RequestStatus, Urgency
from lifeline.utils.clock import to_naive_utc

logger = logging.getLogger(__name__)


class BloodRequestCreate(BaseSchema):
    hospital_id: Optional[UUID] = Field(None, description="Requesting hospital ID")
    hospital_name: Annotated[
        str, StringConstraints(min_length=2, max_length=255, strip_whitespace=True)
    ] = Field(..., description="Name shown to donors in the SMS")
    blood_group: BloodGroup = Field(..., description="Blood group (e.g., A+, O-)")
    quantity_needed: int = Field(
        ..., ge=1, le=100, description="Number of units needed (1-100)"
    )
    urgency: Urgency = Field(..., description="low, medium, high or pregnancy")
    required_by: datetime = Field(..., description="Deadline for donations")
    description: Optional[Annotated[str, StringConstraints(max_length=1000)]] = None
    patient_age: Optional[Annotated[str, StringConstraints(max_length=20)]] = None
    patient_condition: Optional[Annotated[str, StringConstraints(max_length=500)]] = None
    batch_size: int = Field(
        default_factory=lambda: settings.DEFAULT_BATCH_SIZE,
        ge=1,
        le=100,
        description="Donors notified per batch",
    )
    response_window_minutes: int = Field(
        default_factory=lambda: settings.DEFAULT_RESPONSE_WINDOW_MINUTES,
        ge=1,
        le=24 * 60,
        description="Minutes to wait for a response before the next batch",
    )

    @field_validator("blood_group", mode="before")
    def normalize_blood_group(cls, v):
        if isinstance(v, str):
            return "".join(v.split()).upper()
        return v

    @field_validator("required_by")
    def normalize_required_by(cls, v):
        return to_naive_utc(v)


class BloodRequestResponse(BaseModel):
    """Hospital-side view of a request, including batch progress"""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    hospital_id: Optional[UUID] = None
    hospital_name: str
    blood_group: BloodGroup
    quantity_needed: int
    urgency: Urgency
    required_by: datetime
    description: Optional[str] = None
    patient_age: Optional[str] = None
    patient_condition: Optional[str] = None
    status: RequestStatus
    confirmed_units: int
    batch_size: int
    response_window_minutes: int
    notified_donor_ids: List[str] = Field(default_factory=list)
    remaining_donor_queue: List[str] = Field(default_factory=list)
    batch_sent_at: Optional[datetime] = None
    batch_in_progress: bool
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BloodRequestCreated(BaseModel):
    request_id: UUID
    queued_donors: int


class BloodRequestCreateResponse(BaseModel):
    success: bool = True
    data: BloodRequestCreated


class BloodRequestCancel(BaseSchema):
    reason: Optional[Annotated[str, StringConstraints(max_length=200)]] = None


class PublicRequestDetails(BaseModel):
    """What a donor sees behind a response link while the request is open"""

    id: UUID
    hospital_name: str
    blood_group: BloodGroup
    quantity_needed: int
    confirmed_units: int
    remaining_units: int
    urgency: Urgency
    required_by: datetime
    description: Optional[str] = None


class PublicRequestView(BaseModel):
    success: bool = True
    status: Literal["active", "closed"]
    message: Optional[str] = None
    data: Optional[PublicRequestDetails] = None


class ConfirmDonationRequest(BaseSchema):
    request_id: UUID


class ConfirmationResponse(BaseModel):
    """Donor-facing; carries public details only while the request stays open"""

    success: bool
    message: str
    status: Optional[Literal["active", "closed"]] = None
    data: Optional[PublicRequestDetails] = None
