"""
Batch advancement scheduler.

Every ``interval_seconds`` the scheduler expires overdue requests and, for
each active request whose response window has elapsed with units still
missing, releases the in-flight batch and asks the dispatcher for the next
one. A one-off catch-up run fires shortly after start so requests left
waiting across a restart do not sit for a full interval.
"""

from datetime import datetime, timedelta
from typing import Callable

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lifeline.config import settings
from lifeline.database import async_session
from lifeline.models.blood_request import BloodRequest
from lifeline.schemas.base_schema import RequestStatus
from lifeline.services.dispatcher import NotificationDispatcher
from lifeline.services.lifecycle import RequestLifecycle
from lifeline.utils.clock import utcnow
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)

BATCH_JOB_ID = "batch_advancement_job"
CATCH_UP_JOB_ID = "batch_catch_up_job"


class BatchScheduler:
    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        session_factory: Callable[[], AsyncSession] = async_session,
        interval_seconds: int = None,
        startup_delay_seconds: int = None,
    ):
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.BATCH_SCHEDULER_INTERVAL_SECONDS
        self.startup_delay_seconds = (
            startup_delay_seconds
            if startup_delay_seconds is not None
            else settings.BATCH_SCHEDULER_STARTUP_DELAY_SECONDS
        )
        self._scheduler = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def check_pending_batches(self, now: datetime = None) -> int:
        """
        Run one advancement cycle. Returns how many new batches went out.

        Requests whose batch window elapsed are released and advanced.
        Requests left idle with donors still queued (a dispatch that failed
        after release, or a first batch the worker gave up on) are picked up
        once a window has passed since their last activity.

        A store failure skips the whole cycle; a failure on one request is
        logged and the loop moves on to the next.
        """
        now = now or utcnow()
        try:
            async with self.session_factory() as session:
                await RequestLifecycle(session).expire_overdue(now)
                result = await session.execute(
                    select(
                        BloodRequest.id,
                        BloodRequest.batch_in_progress,
                        BloodRequest.batch_sent_at,
                        BloodRequest.created_at,
                        BloodRequest.response_window_minutes,
                        BloodRequest.queue_version,
                        BloodRequest.remaining_donor_queue,
                    ).where(
                        BloodRequest.status == RequestStatus.ACTIVE,
                        BloodRequest.confirmed_units < BloodRequest.quantity_needed,
                    )
                )
                pending = result.all()
        except SQLAlchemyError as e:
            logger.warning(
                f"Batch check skipped, store unavailable: {str(e)}",
                extra={"extra_fields": {"event_type": "batch_check_failed"}},
            )
            return 0

        advanced = 0
        for row in pending:
            last_activity = row.batch_sent_at or row.created_at
            if last_activity is None:
                continue
            if now - last_activity < timedelta(minutes=row.response_window_minutes):
                continue
            if not row.batch_in_progress and not row.remaining_donor_queue:
                continue

            try:
                if row.batch_in_progress:
                    if not await self._release_batch(row.id, row.queue_version):
                        continue
                    logger.info(
                        f"Response window elapsed for request {row.id}, sending next batch",
                        extra={
                            "extra_fields": {
                                "event_type": "batch_window_elapsed",
                                "request_id": str(row.id),
                            }
                        },
                    )
                else:
                    logger.warning(
                        f"Request {row.id} idle with donors queued, resuming dispatch",
                        extra={
                            "extra_fields": {
                                "event_type": "batch_dispatch_resumed",
                                "request_id": str(row.id),
                            }
                        },
                    )
                if await self.dispatcher.send_next_batch(row.id, now=now) is not None:
                    advanced += 1
            except Exception as e:
                logger.error(
                    f"Error advancing batch for request {row.id}: {str(e)}",
                    extra={
                        "extra_fields": {
                            "event_type": "batch_advance_failed",
                            "request_id": str(row.id),
                        }
                    },
                )

        return advanced

    async def _release_batch(self, request_id, queue_version: int) -> bool:
        # Only the writer that still sees the version it read may release
        async with self.session_factory() as session:
            result = await session.execute(
                update(BloodRequest)
                .where(
                    BloodRequest.id == request_id,
                    BloodRequest.status == RequestStatus.ACTIVE,
                    BloodRequest.batch_in_progress.is_(True),
                    BloodRequest.queue_version == queue_version,
                )
                .values(batch_in_progress=False)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    def start(self):
        """Start the periodic batch check"""
        if self._scheduler is not None:
            logger.warning("Batch scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,  # a cycle never overlaps the previous one
                "misfire_grace_time": 30,
            },
        )

        self._scheduler.add_job(
            self.check_pending_batches,
            trigger="interval",
            seconds=self.interval_seconds,
            id=BATCH_JOB_ID,
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.check_pending_batches,
            trigger="date",
            run_date=datetime.now() + timedelta(seconds=self.startup_delay_seconds),
            id=CATCH_UP_JOB_ID,
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            "Batch scheduler started",
            extra={
                "extra_fields": {
                    "event_type": "scheduler_started",
                    "interval_seconds": self.interval_seconds,
                }
            },
        )

    def stop(self):
        """Stop the scheduler gracefully"""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Batch scheduler stopped")
