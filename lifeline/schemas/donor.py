from datetime import date, datetime
from typing import Annotated, Optional, Union
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
)

from lifeline.schemas.base_schema import BloodGroup
from lifeline.utils.clock import to_naive_utc


class DonorCreate(BaseModel):
    """
    Donor payload as it arrives from forms and imported sheets.

    Imported data uses several names for the same field ("Mobile No",
    "Student Name", ...). They are all accepted here so the rest of the
    service only ever sees one shape.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: Annotated[str, StringConstraints(min_length=1, max_length=255)] = Field(
        ..., validation_alias=AliasChoices("name", "Student Name", "full_name")
    )
    phone: Optional[Annotated[str, StringConstraints(max_length=32)]] = Field(
        None, validation_alias=AliasChoices("phone", "phone_number", "phoneNumber", "Mobile No")
    )
    email: Optional[Annotated[str, StringConstraints(max_length=255)]] = None
    blood_group: BloodGroup = Field(
        ..., validation_alias=AliasChoices("blood_group", "bloodGroup", "Blood Group")
    )
    last_donation_date: Optional[Union[datetime, date]] = Field(
        None, validation_alias=AliasChoices("last_donation_date", "lastDonationDate")
    )

    @field_validator("blood_group", mode="before")
    def normalize_blood_group(cls, v):
        if isinstance(v, str):
            return "".join(v.split()).upper()
        return v

    @field_validator("phone")
    def empty_phone_is_missing(cls, v):
        return v or None

    @field_validator("last_donation_date")
    def to_datetime(cls, v):
        if v is None:
            return v
        if isinstance(v, datetime):
            return to_naive_utc(v)
        return datetime(v.year, v.month, v.day)


class DonorRecord(BaseModel):
    """Canonical donor shape handed to the eligibility filter and dispatcher"""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    name: str
    phone: Optional[str] = None
    blood_group: str
    last_donation_date: Optional[datetime] = None


class DonorResponse(DonorRecord):
    email: Optional[str] = None
    created_at: datetime
