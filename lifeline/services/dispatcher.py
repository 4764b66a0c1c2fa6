"""
Notification dispatcher: sends the next batch of a blood request.

A batch is claimed with one conditional UPDATE (queue slice moved to the
notified list, ``batch_in_progress`` set, ``queue_version`` bumped) and
committed before any SMS goes out. A crash mid-send therefore never re-sends
the same donors; each donor gets at most one best-effort attempt.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lifeline.config import settings
from lifeline.database import async_session
from lifeline.models.blood_request import BloodRequest
from lifeline.models.response_token import ResponseToken
from lifeline.schemas.base_schema import BloodGroup, NotificationType, RequestStatus, Urgency
from lifeline.schemas.notification_schema import NotificationEvent
from lifeline.services.donor_directory import DonorDirectory
from lifeline.services.event_sink import EventSink
from lifeline.services.lifecycle import RequestLifecycle, evaluate_status, is_terminal
from lifeline.services.sms import SmsSender, build_sms_sender
from lifeline.services.templates import MessageTemplates, urgency_label
from lifeline.utils.clock import utcnow
from lifeline.utils.generators import build_response_url, generate_response_token
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)

TOKEN_ISSUE_ATTEMPTS = 5


@dataclass(frozen=True)
class ClaimedBatch:
    request_id: UUID
    hospital_id: Optional[UUID]
    hospital_name: str
    blood_group: BloodGroup
    quantity_needed: int
    urgency: Urgency
    donor_ids: List[str]


@dataclass
class BatchDispatchResult:
    request_id: UUID
    donor_ids: List[str] = field(default_factory=list)
    sent_count: int = 0


class NotificationDispatcher:
    def __init__(
        self,
        sender: SmsSender = None,
        templates: MessageTemplates = None,
        events: EventSink = None,
        session_factory: Callable[[], AsyncSession] = async_session,
        response_base_url: str = None,
        max_concurrency: int = None,
    ):
        self.sender = sender or build_sms_sender()
        self.templates = templates or MessageTemplates.from_settings()
        self.session_factory = session_factory
        self.events = events or EventSink(session_factory=session_factory)
        self.response_base_url = response_base_url or settings.RESPONSE_BASE_URL
        self.max_concurrency = max_concurrency or settings.DISPATCH_MAX_CONCURRENCY

    async def send_next_batch(
        self, request_id: UUID, now: datetime = None
    ) -> Optional[BatchDispatchResult]:
        """
        Notify the next ``batch_size`` donors of a request.

        Returns None when there was nothing to send: unknown or closed
        request, a batch already in flight, an empty queue, or another
        worker claimed the batch first. Store errors while claiming
        propagate so the caller can retry; send errors never do.
        """
        now = now or utcnow()
        claim = await self._claim_next_batch(request_id, now)
        if claim is None:
            return None

        logger.info(
            f"Sending batch for request {request_id}",
            extra={
                "extra_fields": {
                    "event_type": "batch_dispatch_started",
                    "request_id": str(request_id),
                    "batch_size": len(claim.donor_ids),
                }
            },
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def notify_with_limit(donor_id: str) -> bool:
            async with semaphore:
                return await self._notify_donor(claim, donor_id)

        outcomes = await asyncio.gather(
            *(notify_with_limit(donor_id) for donor_id in claim.donor_ids),
            return_exceptions=True,
        )

        sent_count = 0
        for donor_id, outcome in zip(claim.donor_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Failed to process donor {donor_id} in batch: {outcome}",
                    extra={
                        "extra_fields": {
                            "event_type": "batch_donor_failed",
                            "request_id": str(request_id),
                            "donor_id": donor_id,
                        }
                    },
                )
            elif outcome:
                sent_count += 1

        logger.info(
            f"Batch complete for request {request_id}. Sent: {sent_count}/{len(claim.donor_ids)}",
            extra={
                "extra_fields": {
                    "event_type": "batch_dispatch_completed",
                    "request_id": str(request_id),
                    "sent_count": sent_count,
                    "batch_size": len(claim.donor_ids),
                }
            },
        )
        return BatchDispatchResult(
            request_id=request_id, donor_ids=list(claim.donor_ids), sent_count=sent_count
        )

    async def _claim_next_batch(self, request_id: UUID, now: datetime) -> Optional[ClaimedBatch]:
        async with self.session_factory() as session:
            request = await session.get(BloodRequest, request_id)
            if request is None:
                logger.warning(f"Blood request {request_id} not found, nothing to send")
                return None

            if is_terminal(request.status):
                return None

            if evaluate_status(request, now) != RequestStatus.ACTIVE:
                # Deadline passed or quota met since the last read
                await RequestLifecycle(session).refresh(request, now)
                return None

            if request.batch_in_progress:
                logger.debug(f"Batch already in progress for request {request_id}")
                return None

            queue = list(request.remaining_donor_queue or [])
            if not queue:
                logger.info(f"No more donors in queue for request {request_id}")
                return None

            batch = queue[: request.batch_size]
            notified = list(request.notified_donor_ids or [])

            result = await session.execute(
                update(BloodRequest)
                .where(
                    BloodRequest.id == request_id,
                    BloodRequest.status == RequestStatus.ACTIVE,
                    BloodRequest.batch_in_progress.is_(False),
                    BloodRequest.queue_version == request.queue_version,
                )
                .values(
                    remaining_donor_queue=queue[len(batch):],
                    notified_donor_ids=notified + batch,
                    batch_sent_at=now,
                    batch_in_progress=True,
                    queue_version=BloodRequest.queue_version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                logger.info(f"Batch for request {request_id} was claimed elsewhere")
                return None

            await session.commit()

            return ClaimedBatch(
                request_id=request.id,
                hospital_id=request.hospital_id,
                hospital_name=request.hospital_name,
                blood_group=request.blood_group,
                quantity_needed=request.quantity_needed,
                urgency=request.urgency,
                donor_ids=batch,
            )

    async def _issue_token(self, session: AsyncSession, request_id: UUID, donor_id: UUID) -> str:
        for attempt in range(1, TOKEN_ISSUE_ATTEMPTS + 1):
            token = generate_response_token()
            session.add(ResponseToken(token=token, request_id=request_id, donor_id=donor_id))
            try:
                await session.commit()
                return token
            except IntegrityError:
                await session.rollback()
                logger.warning(f"Response token collision, retrying (attempt {attempt})")
        raise RuntimeError("Could not issue a unique response token")

    async def _notify_donor(self, claim: ClaimedBatch, donor_id: str) -> bool:
        # Own session per donor; an AsyncSession cannot be shared across tasks
        async with self.session_factory() as session:
            donor = await DonorDirectory(session).get_donor(UUID(donor_id))
            if donor is None or not donor.phone:
                logger.warning(
                    f"Skipping donor {donor_id}: no contact number",
                    extra={
                        "extra_fields": {
                            "event_type": "batch_donor_skipped",
                            "request_id": str(claim.request_id),
                            "donor_id": donor_id,
                        }
                    },
                )
                return False

            token = await self._issue_token(session, claim.request_id, donor.id)

        response_url = build_response_url(self.response_base_url, token)
        message = self.templates.build_message(
            claim.urgency,
            {
                "hospital": claim.hospital_name,
                "bloodType": claim.blood_group.value,
                "quantity": claim.quantity_needed,
                "urgency": urgency_label(claim.urgency),
                "donorName": donor.name,
                "responseUrl": response_url,
            },
        )

        outcome = await self.sender.send(donor.phone, message)
        if not outcome.success:
            logger.warning(
                f"SMS to donor {donor_id} failed: {outcome.error}",
                extra={
                    "extra_fields": {
                        "event_type": "batch_sms_failed",
                        "request_id": str(claim.request_id),
                        "donor_id": donor_id,
                    }
                },
            )
            return False

        await self.events.publish(
            NotificationEvent(
                type=NotificationType.INFO,
                title="SMS Sent (Batch)",
                message=f"SMS sent to {donor.name} ({donor.phone})",
                hospital_id=claim.hospital_id,
                request_id=claim.request_id,
                donor_id=donor.id,
                meta={"sms_id": outcome.message_id},
            )
        )
        return True
