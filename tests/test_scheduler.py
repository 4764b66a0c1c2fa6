"""Batch advancement on response-window expiry."""

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from lifeline.database import async_session
from lifeline.models.blood_request import BloodRequest
from lifeline.schemas.base_schema import RequestStatus
from lifeline.services.scheduler import BatchScheduler
from lifeline.utils.clock import utcnow


async def load(request_id) -> BloodRequest:
    async with async_session() as session:
        return await session.get(BloodRequest, request_id)


async def test_next_batch_only_after_window_elapses(make_donor, make_request, dispatcher, sms_sender):
    for name in ("Ama", "Kofi", "Esi"):
        await make_donor(name)
    now = utcnow()
    created = await make_request(now=now, response_window_minutes=2)
    await dispatcher.send_next_batch(created.id, now=now)

    scheduler = BatchScheduler(dispatcher, session_factory=async_session)

    assert await scheduler.check_pending_batches(now + timedelta(minutes=1)) == 0
    assert len(sms_sender.sent) == 1

    assert await scheduler.check_pending_batches(now + timedelta(minutes=2)) == 1
    assert len(sms_sender.sent) == 2

    request = await load(created.id)
    assert len(request.notified_donor_ids) == 2
    assert request.batch_in_progress is True


async def test_overlapping_cycles_advance_once(make_donor, make_request, dispatcher, sms_sender):
    for name in ("Ama", "Kofi", "Esi"):
        await make_donor(name)
    now = utcnow()
    created = await make_request(now=now)
    await dispatcher.send_next_batch(created.id, now=now)

    scheduler = BatchScheduler(dispatcher, session_factory=async_session)
    later = now + timedelta(minutes=3)
    results = await asyncio.gather(
        scheduler.check_pending_batches(later), scheduler.check_pending_batches(later)
    )

    assert sum(results) == 1
    assert len(sms_sender.sent) == 2


async def test_fulfilled_request_is_not_advanced(make_donor, make_request, dispatcher, sms_sender):
    for name in ("Ama", "Kofi"):
        await make_donor(name)
    now = utcnow()
    created = await make_request(now=now, quantity_needed=1)
    await dispatcher.send_next_batch(created.id, now=now)

    async with async_session() as session:
        request = await session.get(BloodRequest, created.id)
        request.confirmed_units = 1
        request.status = RequestStatus.FULFILLED
        await session.commit()

    scheduler = BatchScheduler(dispatcher, session_factory=async_session)
    assert await scheduler.check_pending_batches(now + timedelta(minutes=5)) == 0
    assert len(sms_sender.sent) == 1


async def test_overdue_request_is_expired_instead_of_advanced(make_donor, make_request, dispatcher, sms_sender):
    for name in ("Ama", "Kofi"):
        await make_donor(name)
    now = utcnow()
    created = await make_request(now=now, required_by=now + timedelta(minutes=3))
    await dispatcher.send_next_batch(created.id, now=now)

    scheduler = BatchScheduler(dispatcher, session_factory=async_session)
    assert await scheduler.check_pending_batches(now + timedelta(minutes=10)) == 0

    request = await load(created.id)
    assert request.status == RequestStatus.EXPIRED
    assert request.batch_in_progress is False
    assert len(sms_sender.sent) == 1


async def test_exhausted_queue_stays_open_without_sending(make_donor, make_request, dispatcher, sms_sender):
    await make_donor("Ama")
    now = utcnow()
    created = await make_request(now=now)
    await dispatcher.send_next_batch(created.id, now=now)

    scheduler = BatchScheduler(dispatcher, session_factory=async_session)
    await scheduler.check_pending_batches(now + timedelta(minutes=3))

    request = await load(created.id)
    assert request.status == RequestStatus.ACTIVE
    assert request.remaining_donor_queue == []
    assert len(sms_sender.sent) == 1


class BrokenSession:
    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    async def __aexit__(self, *exc):
        return False


async def test_store_failure_skips_the_cycle(dispatcher, caplog):
    scheduler = BatchScheduler(dispatcher, session_factory=BrokenSession)

    with caplog.at_level(logging.WARNING, logger="lifeline.services.scheduler"):
        assert await scheduler.check_pending_batches() == 0

    skipped = [r for r in caplog.records if r.getMessage().startswith("Batch check skipped")]
    assert [r.levelno for r in skipped] == [logging.WARNING]


async def test_dispatch_error_does_not_stop_the_loop(make_donor, make_request, dispatcher, sms_sender):
    for name in ("Ama", "Kofi", "Esi", "Kwesi"):
        await make_donor(name)
    now = utcnow()
    first = await make_request(now=now)
    second = await make_request(now=now)
    await dispatcher.send_next_batch(first.id, now=now)
    await dispatcher.send_next_batch(second.id, now=now)

    calls = []
    original = dispatcher.send_next_batch

    async def flaky(request_id, now=None):
        calls.append(request_id)
        if request_id == first.id:
            raise RuntimeError("boom")
        return await original(request_id, now=now)

    dispatcher.send_next_batch = flaky
    scheduler = BatchScheduler(dispatcher, session_factory=async_session)

    assert await scheduler.check_pending_batches(now + timedelta(minutes=3)) == 1
    assert set(calls) == {first.id, second.id}

    # The failed request was released but not resent; the next cycle picks it up
    dispatcher.send_next_batch = original
    assert await scheduler.check_pending_batches(now + timedelta(minutes=6)) == 2
    assert len((await load(first.id)).notified_donor_ids) == 2


async def test_start_and_stop_register_jobs(dispatcher):
    scheduler = BatchScheduler(dispatcher, interval_seconds=60, startup_delay_seconds=10)
    scheduler.start()
    try:
        assert scheduler.running
        job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
        assert job_ids == {"batch_advancement_job", "batch_catch_up_job"}
    finally:
        scheduler.stop()
    assert not scheduler.running
