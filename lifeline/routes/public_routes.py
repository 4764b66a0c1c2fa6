"""
Donor-facing endpoints. No authentication: donors arrive from SMS links.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from lifeline.dependencies import get_db
from lifeline.schemas.base_schema import RequestStatus
from lifeline.schemas.request import (
    ConfirmationResponse,
    ConfirmDonationRequest,
    PublicRequestView,
)
from lifeline.services.blood_request import BloodRequestService, public_details
from lifeline.services.confirmation import ConfirmationCoordinator, ConfirmationResult
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["public"])


def _confirmation_response(result: ConfirmationResult):
    request = result.request
    body = ConfirmationResponse(success=result.success, message=result.message)
    if request is not None and request.status == RequestStatus.ACTIVE:
        body = body.model_copy(update={"status": "active", "data": public_details(request)})
    elif request is not None:
        # Closed requests keep their details private
        body = body.model_copy(update={"status": "closed"})
    if result.success:
        return body

    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=body.model_dump(mode="json"),
    )


@router.get("/public/blood-requests/{request_id}", response_model=PublicRequestView)
async def get_public_blood_request(request_id: UUID, db: AsyncSession = Depends(get_db)):
    """What a donor sees: open requests with remaining units, or a closed notice."""
    service = BloodRequestService(db)
    return await service.get_public_view(request_id)


@router.post(
    "/public/blood-requests/confirm",
    response_model=ConfirmationResponse,
    responses={409: {"model": ConfirmationResponse}},
)
async def confirm_donation(
    confirm_data: ConfirmDonationRequest, db: AsyncSession = Depends(get_db)
):
    coordinator = ConfirmationCoordinator(db)
    result = await coordinator.confirm_donation(confirm_data.request_id)
    return _confirmation_response(result)


@router.get("/respond/{token}", response_model=PublicRequestView)
async def get_request_by_response_token(token: str, db: AsyncSession = Depends(get_db)):
    service = BloodRequestService(db)
    return await service.get_public_view_by_token(token)


@router.post(
    "/respond/{token}/confirm",
    response_model=ConfirmationResponse,
    responses={409: {"model": ConfirmationResponse}},
)
async def confirm_with_response_token(token: str, db: AsyncSession = Depends(get_db)):
    """Confirm through a single-use response link."""
    coordinator = ConfirmationCoordinator(db)
    result = await coordinator.confirm_with_token(token)
    return _confirmation_response(result)
