from enum import Enum

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema shared by request payloads"""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
        from_attributes=True,
    )


class BloodGroup(str, Enum):
    """Enum for valid blood groups"""

    A_POSITIVE = "A+"
    A_NEGATIVE = "A-"
    B_POSITIVE = "B+"
    B_NEGATIVE = "B-"
    AB_POSITIVE = "AB+"
    AB_NEGATIVE = "AB-"
    O_POSITIVE = "O+"
    O_NEGATIVE = "O-"

    @classmethod
    def _missing_(cls, value):
        # Accept " ab + " style input from forms and imported sheets
        if isinstance(value, str):
            normalized = "".join(value.split()).upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class Urgency(str, Enum):

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PREGNANCY = "pregnancy"


class RequestStatus(str, Enum):

    ACTIVE = "active"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class NotificationType(str, Enum):

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
