import time
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lifeline.dependencies import get_db, get_dispatch_worker
from lifeline.exceptions import LifelineError
from lifeline.middlewares.logging_middleware import get_client_ip
from lifeline.schemas.base_schema import RequestStatus
from lifeline.schemas.request import (
    BloodRequestCancel,
    BloodRequestCreate,
    BloodRequestCreated,
    BloodRequestCreateResponse,
    BloodRequestResponse,
)
from lifeline.services.blood_request import BloodRequestService
from lifeline.services.dispatch_worker import DispatchWorker
from lifeline.utils.logging_config import (
    get_logger,
    log_audit_event,
    log_performance_metric,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/blood-requests", tags=["blood requests"])


@router.post(
    "",
    response_model=BloodRequestCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_blood_request(
    request_data: BloodRequestCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    worker: DispatchWorker = Depends(get_dispatch_worker),
):
    """
    Create a blood request and queue eligible donors.
    The first batch is sent in the background.
    """
    start_time = time.time()
    client_ip = get_client_ip(request)

    logger.info(
        "Blood request creation started",
        extra={
            "extra_fields": {
                "event_type": "blood_request_creation_attempt",
                "hospital_id": str(request_data.hospital_id) if request_data.hospital_id else None,
                "blood_group": request_data.blood_group.value,
                "quantity": request_data.quantity_needed,
                "urgency": request_data.urgency.value,
                "client_ip": client_ip,
            }
        },
    )

    try:
        service = BloodRequestService(db)
        blood_request = await service.create_request(request_data)
        worker.submit(blood_request.id)

        duration_ms = (time.time() - start_time) * 1000
        queued = len(blood_request.remaining_donor_queue)

        log_audit_event(
            action="create",
            resource_type="blood_request",
            resource_id=str(blood_request.id),
            new_values={
                "blood_group": blood_request.blood_group.value,
                "quantity_needed": blood_request.quantity_needed,
                "urgency": blood_request.urgency.value,
                "queued_donors": queued,
            },
            hospital=blood_request.hospital_name,
        )

        if duration_ms > 2000:
            log_performance_metric(
                operation="create_blood_request",
                duration_seconds=duration_ms / 1000,
                additional_metrics={"queued_donors": queued},
            )

        return BloodRequestCreateResponse(
            data=BloodRequestCreated(request_id=blood_request.id, queued_donors=queued)
        )

    except (HTTPException, LifelineError):
        raise
    except Exception as e:
        logger.error(
            f"Blood request creation failed: {str(e)}",
            extra={
                "extra_fields": {
                    "event_type": "blood_request_creation_error",
                    "client_ip": client_ip,
                }
            },
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create blood request",
        )


@router.get("", response_model=List[BloodRequestResponse])
async def list_blood_requests(
    hospital_id: Optional[UUID] = None,
    status_filter: Optional[RequestStatus] = None,
    db: AsyncSession = Depends(get_db),
):
    """List requests, newest first, optionally for one hospital or status."""
    service = BloodRequestService(db)
    requests = await service.list_requests(hospital_id=hospital_id, status=status_filter)
    return [BloodRequestResponse.model_validate(r) for r in requests]


@router.get("/{request_id}", response_model=BloodRequestResponse)
async def get_blood_request(request_id: UUID, db: AsyncSession = Depends(get_db)):
    service = BloodRequestService(db)
    blood_request = await service.get_request(request_id)
    return BloodRequestResponse.model_validate(blood_request)


@router.post("/{request_id}/cancel", response_model=BloodRequestResponse)
async def cancel_blood_request(
    request_id: UUID,
    cancel_data: Optional[BloodRequestCancel] = None,
    db: AsyncSession = Depends(get_db),
):
    reason = cancel_data.reason if cancel_data else None
    service = BloodRequestService(db)
    blood_request = await service.cancel_request(request_id, reason)

    log_audit_event(
        action="cancel",
        resource_type="blood_request",
        resource_id=str(request_id),
        old_values={"status": RequestStatus.ACTIVE.value},
        new_values={"status": blood_request.status.value, "reason": reason},
        hospital=blood_request.hospital_name,
    )
    return BloodRequestResponse.model_validate(blood_request)
