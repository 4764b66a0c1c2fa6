from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from lifeline.exceptions import (
    InvalidRequestError,
    RequestNotFoundError,
    ResponseTokenNotFoundError,
)
from lifeline.models.blood_request import BloodRequest
from lifeline.models.response_token import ResponseToken
from lifeline.schemas.base_schema import NotificationType, RequestStatus
from lifeline.schemas.notification_schema import NotificationEvent
from lifeline.schemas.request import (
    BloodRequestCreate,
    PublicRequestDetails,
    PublicRequestView,
)
from lifeline.services.donor_directory import DonorDirectory
from lifeline.services.eligibility import build_donor_queue
from lifeline.services.event_sink import EventSink
from lifeline.services.lifecycle import RequestLifecycle
from lifeline.utils.clock import utcnow
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)

FULFILLED_PUBLIC_MESSAGE = "Blood request fulfilled. Thank you."
CLOSED_PUBLIC_MESSAGES = {
    RequestStatus.FULFILLED: FULFILLED_PUBLIC_MESSAGE,
    RequestStatus.EXPIRED: "Blood request has expired. Thank you.",
    RequestStatus.CANCELLED: "Blood request was cancelled. Thank you.",
}


def public_details(request: BloodRequest) -> PublicRequestDetails:
    """Fields a donor may see. Donor lists and patient details stay hidden."""
    return PublicRequestDetails(
        id=request.id,
        hospital_name=request.hospital_name,
        blood_group=request.blood_group,
        quantity_needed=request.quantity_needed,
        confirmed_units=request.confirmed_units,
        remaining_units=request.remaining_units,
        urgency=request.urgency,
        required_by=request.required_by,
        description=request.description,
    )


class BloodRequestService:
    def __init__(self, db: AsyncSession, events: EventSink = None):
        self.db = db
        self.events = events or EventSink()

    async def create_request(
        self, data: BloodRequestCreate, now: datetime = None
    ) -> BloodRequest:
        """
        Create a request and queue every eligible donor.

        The first batch is not sent here; the caller hands the new id to the
        dispatch worker.
        """
        now = now or utcnow()
        if data.required_by <= now:
            raise InvalidRequestError("required_by must be in the future.")

        donors = await DonorDirectory(self.db).list_donors()
        queue = build_donor_queue(data.blood_group.value, donors, now)

        request = BloodRequest(
            hospital_id=data.hospital_id,
            hospital_name=data.hospital_name,
            blood_group=data.blood_group,
            quantity_needed=data.quantity_needed,
            urgency=data.urgency,
            required_by=data.required_by,
            description=data.description,
            patient_age=data.patient_age,
            patient_condition=data.patient_condition,
            status=RequestStatus.ACTIVE,
            confirmed_units=0,
            batch_size=data.batch_size,
            response_window_minutes=data.response_window_minutes,
            notified_donor_ids=[],
            remaining_donor_queue=queue,
            batch_in_progress=False,
            queue_version=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(request)
        await self.db.commit()
        await self.db.refresh(request)

        logger.info(
            f"Blood request created with {len(queue)} eligible donor(s)",
            extra={
                "extra_fields": {
                    "event_type": "blood_request_created",
                    "request_id": str(request.id),
                    "blood_group": request.blood_group.value,
                    "quantity_needed": request.quantity_needed,
                    "queued_donors": len(queue),
                }
            },
        )

        await self.events.publish(
            NotificationEvent(
                type=NotificationType.INFO,
                title="Blood Request Created",
                message=(
                    f"Request for {request.quantity_needed} unit(s) of "
                    f"{request.blood_group.value}: {len(queue)} eligible donor(s) queued"
                ),
                hospital_id=request.hospital_id,
                request_id=request.id,
                meta={"queued_donors": len(queue), "urgency": request.urgency.value},
            )
        )
        return request

    async def get_request(self, request_id: UUID, now: datetime = None) -> BloodRequest:
        request = await self.db.get(BloodRequest, request_id)
        if request is None:
            raise RequestNotFoundError()
        return await RequestLifecycle(self.db).refresh(request, now)

    async def list_requests(
        self,
        hospital_id: Optional[UUID] = None,
        status: Optional[RequestStatus] = None,
    ) -> List[BloodRequest]:
        # Close overdue requests first so the status filter is accurate
        await RequestLifecycle(self.db).expire_overdue()

        query = select(BloodRequest).order_by(BloodRequest.created_at.desc())
        if hospital_id is not None:
            query = query.where(BloodRequest.hospital_id == hospital_id)
        if status is not None:
            query = query.where(BloodRequest.status == status)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def cancel_request(
        self, request_id: UUID, reason: Optional[str] = None
    ) -> BloodRequest:
        request = await RequestLifecycle(self.db).cancel(request_id, reason)
        await self.events.publish(
            NotificationEvent(
                type=NotificationType.WARNING,
                title="Blood Request Cancelled",
                message=reason or "The blood request was cancelled",
                hospital_id=request.hospital_id,
                request_id=request.id,
            )
        )
        return request

    async def get_public_view(
        self, request_id: UUID, now: datetime = None
    ) -> PublicRequestView:
        """Donor-facing view. Never exposes the donor lists."""
        request = await self.get_request(request_id, now)

        if request.status != RequestStatus.ACTIVE:
            return PublicRequestView(
                status="closed", message=CLOSED_PUBLIC_MESSAGES[request.status]
            )

        return PublicRequestView(status="active", data=public_details(request))

    async def get_public_view_by_token(
        self, token: str, now: datetime = None
    ) -> PublicRequestView:
        result = await self.db.execute(
            select(ResponseToken.request_id).where(ResponseToken.token == token)
        )
        request_id = result.scalar_one_or_none()
        if request_id is None:
            raise ResponseTokenNotFoundError()
        return await self.get_public_view(request_id, now)
