from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from lifeline.dependencies import get_db
from lifeline.schemas.base_schema import BloodGroup
from lifeline.schemas.donor import DonorCreate, DonorResponse
from lifeline.services.donor_directory import DonorDirectory
from lifeline.utils.logging_config import get_logger, log_audit_event

logger = get_logger(__name__)

router = APIRouter(prefix="/donors", tags=["donors"])


@router.post("", response_model=DonorResponse, status_code=status.HTTP_201_CREATED)
async def create_donor(donor_data: DonorCreate, db: AsyncSession = Depends(get_db)):
    """
    Add a donor to the directory. Accepts the field names used by imported
    sheets ("Mobile No", "Blood Group", ...) as well as the plain ones.
    """
    directory = DonorDirectory(db)
    donor = await directory.create_donor(donor_data)

    log_audit_event(
        action="create",
        resource_type="donor",
        resource_id=str(donor.id),
        new_values={"blood_group": donor.blood_group},
    )
    return DonorResponse.model_validate(donor)


@router.get("", response_model=List[DonorResponse])
async def list_donors(
    blood_group: Optional[BloodGroup] = None, db: AsyncSession = Depends(get_db)
):
    directory = DonorDirectory(db)
    donors = await directory.find_donors(blood_group.value if blood_group else None)
    return [DonorResponse.model_validate(donor) for donor in donors]
