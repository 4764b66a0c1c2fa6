"""
Request lifecycle state machine.

    active -> fulfilled   confirmed_units >= quantity_needed
    active -> expired     now > required_by with units still missing
    active -> cancelled   explicit hospital/admin action only

Terminal states are sticky. Every transition is a conditional update on
``status = 'active'`` so concurrent writers can never move a closed request.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, update
from sqlalchemy.ext.asyncio import AsyncSession

from lifeline.exceptions import RequestClosedError, RequestNotFoundError
from lifeline.models.blood_request import BloodRequest
from lifeline.schemas.base_schema import RequestStatus
from lifeline.utils.clock import utcnow
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)

TERMINAL_STATUSES = frozenset(
    {RequestStatus.FULFILLED, RequestStatus.EXPIRED, RequestStatus.CANCELLED}
)


def is_terminal(status: RequestStatus) -> bool:
    return status in TERMINAL_STATUSES


def evaluate_status(request: BloodRequest, now: datetime) -> RequestStatus:
    """Status the request should have at ``now``; never reopens a closed one."""
    if is_terminal(request.status):
        return request.status
    if request.is_quota_met:
        return RequestStatus.FULFILLED
    if request.is_past_deadline(now):
        return RequestStatus.EXPIRED
    return RequestStatus.ACTIVE


def _transition_guard(target: RequestStatus, now: datetime):
    if target == RequestStatus.FULFILLED:
        return BloodRequest.confirmed_units >= BloodRequest.quantity_needed
    if target == RequestStatus.EXPIRED:
        return and_(
            BloodRequest.required_by < now,
            BloodRequest.confirmed_units < BloodRequest.quantity_needed,
        )
    return None


class RequestLifecycle:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _close(
        self,
        request_id: UUID,
        target: RequestStatus,
        now: datetime,
        reason: Optional[str] = None,
    ) -> bool:
        conditions = [BloodRequest.id == request_id, BloodRequest.status == RequestStatus.ACTIVE]
        guard = _transition_guard(target, now)
        if guard is not None:
            conditions.append(guard)

        values = {"status": target, "batch_in_progress": False, "updated_at": now}
        if reason is not None:
            values["cancellation_reason"] = reason

        result = await self.db.execute(
            update(BloodRequest)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def refresh(self, request: BloodRequest, now: datetime = None) -> BloodRequest:
        """Persist any transition that is due and return the current row."""
        if is_terminal(request.status):
            return request

        now = now or utcnow()
        target = evaluate_status(request, now)
        if target == RequestStatus.ACTIVE:
            return request

        if await self._close(request.id, target, now):
            logger.info(
                f"Blood request {request.id} moved to {target.value}",
                extra={
                    "extra_fields": {
                        "event_type": "blood_request_closed",
                        "request_id": str(request.id),
                        "status": target.value,
                    }
                },
            )
        await self.db.commit()
        await self.db.refresh(request)
        return request

    async def cancel(
        self, request_id: UUID, reason: Optional[str] = None, now: datetime = None
    ) -> BloodRequest:
        now = now or utcnow()
        if not await self._close(request_id, RequestStatus.CANCELLED, now, reason):
            await self.db.rollback()
            request = await self.db.get(BloodRequest, request_id)
            if request is None:
                raise RequestNotFoundError()
            raise RequestClosedError(f"Blood request is already {request.status.value}.")

        await self.db.commit()
        logger.info(
            f"Blood request {request_id} cancelled",
            extra={
                "extra_fields": {
                    "event_type": "blood_request_cancelled",
                    "request_id": str(request_id),
                    "reason": reason,
                }
            },
        )
        return await self.db.get(BloodRequest, request_id, populate_existing=True)

    async def expire_overdue(self, now: datetime = None) -> int:
        """Close every active request whose deadline passed short of quota."""
        now = now or utcnow()
        result = await self.db.execute(
            update(BloodRequest)
            .where(
                BloodRequest.status == RequestStatus.ACTIVE,
                _transition_guard(RequestStatus.EXPIRED, now),
            )
            .values(status=RequestStatus.EXPIRED, batch_in_progress=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount:
            logger.info(
                f"Expired {result.rowcount} overdue blood request(s)",
                extra={
                    "extra_fields": {
                        "event_type": "blood_requests_expired",
                        "count": result.rowcount,
                    }
                },
            )
        return result.rowcount
