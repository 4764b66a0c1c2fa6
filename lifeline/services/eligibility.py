"""
Donor eligibility filter.

A donor can be asked for a request when their blood group matches exactly
(after normalization) and they have not donated within the cooldown period.
Everything here is pure: no I/O, no clock reads.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from lifeline.config import settings
from lifeline.schemas.donor import DonorRecord
from lifeline.utils.clock import subtract_months


def normalize_blood_group(value: Optional[str]) -> str:
    """'ab +' -> 'AB+'. Missing values normalize to an empty string."""
    if not value:
        return ""
    return "".join(str(value).split()).upper()


def donation_cutoff(now: datetime, months: int = None) -> datetime:
    """Latest last-donation date that still counts as rested."""
    if months is None:
        months = settings.DONATION_COOLDOWN_MONTHS
    return subtract_months(now, months)


def is_eligible(
    donor: DonorRecord, blood_group: str, now: datetime, cooldown_months: int = None
) -> bool:
    requested = normalize_blood_group(blood_group)
    if not requested or normalize_blood_group(donor.blood_group) != requested:
        return False

    if donor.last_donation_date is None:
        return True

    return donor.last_donation_date <= donation_cutoff(now, cooldown_months)


def build_donor_queue(
    blood_group: str,
    donors: Iterable[DonorRecord],
    now: datetime,
    cooldown_months: int = None,
) -> List[str]:
    """
    Ordered donor ids to notify for a request.

    Sorted by display name (case-sensitive); donors with the same name keep
    their directory order. The order is the batch-send priority.
    """
    eligible = [
        donor
        for donor in donors
        if is_eligible(donor, blood_group, now, cooldown_months)
    ]
    eligible.sort(key=lambda donor: donor.name or "")
    return [str(donor.id) for donor in eligible]
