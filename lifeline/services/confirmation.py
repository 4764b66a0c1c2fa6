"""
Donation confirmations.

The store decides who gets a unit: a single conditional increment only
matches while the request is active, under quota and before its deadline,
so concurrent confirmations can never push ``confirmed_units`` past
``quantity_needed``. There is no read-then-write window to race through.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lifeline.exceptions import (
    ALREADY_CLOSED_MESSAGE,
    RequestNotFoundError,
    ResponseTokenNotFoundError,
)
from lifeline.models.blood_request import BloodRequest
from lifeline.models.response_token import ResponseToken
from lifeline.schemas.base_schema import NotificationType, RequestStatus
from lifeline.schemas.notification_schema import NotificationEvent
from lifeline.services.event_sink import EventSink
from lifeline.services.lifecycle import RequestLifecycle
from lifeline.utils.clock import utcnow
from lifeline.utils.logging_config import get_logger, log_audit_event

logger = get_logger(__name__)

CONFIRMED_MESSAGE = "Donation confirmed successfully."
TOKEN_USED_MESSAGE = "This response link has already been used."


@dataclass
class ConfirmationResult:
    success: bool
    message: str
    request: Optional[BloodRequest] = None


class ConfirmationCoordinator:
    def __init__(self, db: AsyncSession, events: EventSink = None):
        self.db = db
        self.events = events or EventSink()

    async def _increment(self, request_id: UUID, now: datetime) -> bool:
        result = await self.db.execute(
            update(BloodRequest)
            .where(
                BloodRequest.id == request_id,
                BloodRequest.status == RequestStatus.ACTIVE,
                BloodRequest.confirmed_units < BloodRequest.quantity_needed,
                BloodRequest.required_by >= now,
            )
            .values(confirmed_units=BloodRequest.confirmed_units + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        # Close the request in the same transaction when this unit met the quota
        await self.db.execute(
            update(BloodRequest)
            .where(
                BloodRequest.id == request_id,
                BloodRequest.status == RequestStatus.ACTIVE,
                BloodRequest.confirmed_units >= BloodRequest.quantity_needed,
            )
            .values(status=RequestStatus.FULFILLED, batch_in_progress=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return True

    async def _rejected(self, request_id: UUID, now: datetime) -> ConfirmationResult:
        await self.db.rollback()
        request = await self.db.get(BloodRequest, request_id, populate_existing=True)
        if request is None:
            raise RequestNotFoundError()

        request = await RequestLifecycle(self.db).refresh(request, now)
        logger.info(
            f"Confirmation rejected for request {request_id}",
            extra={
                "extra_fields": {
                    "event_type": "donation_confirmation_rejected",
                    "request_id": str(request_id),
                    "status": request.status.value,
                }
            },
        )
        return ConfirmationResult(success=False, message=ALREADY_CLOSED_MESSAGE, request=request)

    async def _accepted(
        self, request_id: UUID, donor_id: Optional[UUID] = None
    ) -> ConfirmationResult:
        await self.db.commit()
        request = await self.db.get(BloodRequest, request_id, populate_existing=True)

        logger.info(
            f"Donation confirmed for request {request_id} "
            f"({request.confirmed_units}/{request.quantity_needed})",
            extra={
                "extra_fields": {
                    "event_type": "donation_confirmed",
                    "request_id": str(request_id),
                    "confirmed_units": request.confirmed_units,
                    "quantity_needed": request.quantity_needed,
                }
            },
        )
        log_audit_event(
            action="confirm_donation",
            resource_type="blood_request",
            resource_id=str(request_id),
            new_values={
                "confirmed_units": request.confirmed_units,
                "status": request.status.value,
                "donor_id": str(donor_id) if donor_id else None,
            },
            hospital=request.hospital_name,
        )

        await self.events.publish(
            NotificationEvent(
                type=NotificationType.SUCCESS,
                title="Donation Confirmed",
                message=(
                    f"A donor confirmed for {request.blood_group.value} "
                    f"({request.confirmed_units}/{request.quantity_needed} units)"
                ),
                hospital_id=request.hospital_id,
                request_id=request.id,
                donor_id=donor_id,
                meta={
                    "confirmed_units": request.confirmed_units,
                    "quantity_needed": request.quantity_needed,
                },
            )
        )
        if request.status == RequestStatus.FULFILLED:
            await self.events.publish(
                NotificationEvent(
                    type=NotificationType.SUCCESS,
                    title="Blood Request Fulfilled",
                    message=(
                        f"All {request.quantity_needed} unit(s) of "
                        f"{request.blood_group.value} have been confirmed"
                    ),
                    hospital_id=request.hospital_id,
                    request_id=request.id,
                )
            )

        return ConfirmationResult(success=True, message=CONFIRMED_MESSAGE, request=request)

    async def confirm_donation(
        self, request_id: UUID, now: datetime = None
    ) -> ConfirmationResult:
        """
        Record one confirmed unit for ``request_id``.

        Raises RequestNotFoundError for an unknown id. A request that is
        closed, full or past its deadline yields a failed result instead.
        """
        now = now or utcnow()
        if not await self._increment(request_id, now):
            return await self._rejected(request_id, now)
        return await self._accepted(request_id)

    async def confirm_with_token(self, token: str, now: datetime = None) -> ConfirmationResult:
        """
        Confirm through a response link. The token is consumed in the same
        transaction as the increment, so a rejected confirmation leaves it
        unused.
        """
        now = now or utcnow()
        consumed = await self.db.execute(
            update(ResponseToken)
            .where(ResponseToken.token == token, ResponseToken.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )

        result = await self.db.execute(
            select(ResponseToken.request_id, ResponseToken.donor_id).where(
                ResponseToken.token == token
            )
        )
        row = result.first()
        if row is None:
            await self.db.rollback()
            raise ResponseTokenNotFoundError()

        request_id, donor_id = row
        if consumed.rowcount != 1:
            await self.db.rollback()
            logger.info(
                f"Response token reused for request {request_id}",
                extra={
                    "extra_fields": {
                        "event_type": "response_token_reused",
                        "request_id": str(request_id),
                    }
                },
            )
            request = await self.db.get(BloodRequest, request_id, populate_existing=True)
            return ConfirmationResult(success=False, message=TOKEN_USED_MESSAGE, request=request)

        if not await self._increment(request_id, now):
            return await self._rejected(request_id, now)
        return await self._accepted(request_id, donor_id=donor_id)
