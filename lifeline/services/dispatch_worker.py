"""
Background dispatch worker.

Request creation only enqueues the new request id; the worker sends the
first batch off the HTTP path. Store errors are retried with exponential
backoff since the batch claim is idempotent.
"""

import asyncio
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from lifeline.config import settings
from lifeline.services.dispatcher import NotificationDispatcher
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)


class DispatchWorker:
    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        max_attempts: int = None,
        backoff_seconds: float = None,
    ):
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts or settings.DISPATCH_RETRY_ATTEMPTS
        self.backoff_seconds = (
            backoff_seconds
            if backoff_seconds is not None
            else settings.DISPATCH_RETRY_BACKOFF_SECONDS
        )
        self.queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    def submit(self, request_id: UUID):
        self.queue.put_nowait(request_id)
        logger.debug(f"Queued first batch for request {request_id}")

    async def dispatch(self, request_id: UUID) -> bool:
        """Send the next batch for ``request_id``, retrying store failures."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.dispatcher.send_next_batch(request_id)
                return True
            except SQLAlchemyError as e:
                logger.warning(
                    f"Dispatch attempt {attempt} for request {request_id} failed: {str(e)}",
                    extra={
                        "extra_fields": {
                            "event_type": "dispatch_retry",
                            "request_id": str(request_id),
                            "attempt": attempt,
                        }
                    },
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))
            except Exception as e:
                logger.error(
                    f"Dispatch for request {request_id} failed: {str(e)}",
                    extra={
                        "extra_fields": {
                            "event_type": "dispatch_failed",
                            "request_id": str(request_id),
                        }
                    },
                )
                return False

        logger.error(
            f"Giving up dispatch for request {request_id} after {self.max_attempts} attempts",
            extra={
                "extra_fields": {
                    "event_type": "dispatch_abandoned",
                    "request_id": str(request_id),
                }
            },
        )
        return False

    async def _run(self):
        while True:
            request_id = await self.queue.get()
            try:
                await self.dispatch(request_id)
            finally:
                self.queue.task_done()

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info("Dispatch worker started")

    async def join(self):
        """Wait until every submitted request has been handled."""
        await self.queue.join()

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Dispatch worker stopped")
