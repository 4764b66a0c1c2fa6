from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from lifeline.models.donor import Donor
from lifeline.schemas.donor import DonorCreate, DonorRecord
from lifeline.services.eligibility import normalize_blood_group
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)


class DonorDirectory:
    """Read access to donors in the canonical shape the engine works with."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_donors(self, blood_group: Optional[str] = None) -> List[Donor]:
        """Donor rows in directory order (oldest first)."""
        query = select(Donor).order_by(Donor.created_at, Donor.id)
        if blood_group:
            query = query.where(Donor.blood_group == normalize_blood_group(blood_group))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_donors(self, blood_group: Optional[str] = None) -> List[DonorRecord]:
        donors = await self.find_donors(blood_group)
        return [DonorRecord.model_validate(donor) for donor in donors]

    async def get_donor(self, donor_id: UUID) -> Optional[DonorRecord]:
        donor = await self.db.get(Donor, donor_id)
        if donor is None:
            return None
        return DonorRecord.model_validate(donor)

    async def create_donor(self, data: DonorCreate) -> Donor:
        donor = Donor(
            name=data.name,
            phone=data.phone,
            email=data.email,
            blood_group=normalize_blood_group(data.blood_group.value),
            last_donation_date=data.last_donation_date,
        )
        self.db.add(donor)
        await self.db.commit()
        await self.db.refresh(donor)

        logger.info(
            "Donor added to directory",
            extra={
                "extra_fields": {
                    "event_type": "donor_created",
                    "donor_id": str(donor.id),
                    "blood_group": donor.blood_group,
                }
            },
        )
        return donor
