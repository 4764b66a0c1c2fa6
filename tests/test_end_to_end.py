"""Whole request life: creation, windowed batches, confirmations, closure."""

from datetime import timedelta

from sqlalchemy import select

from lifeline.database import async_session
from lifeline.exceptions import ALREADY_CLOSED_MESSAGE
from lifeline.models.blood_request import BloodRequest
from lifeline.models.response_token import ResponseToken
from lifeline.schemas.base_schema import RequestStatus
from lifeline.services.confirmation import ConfirmationCoordinator
from lifeline.services.dispatch_worker import DispatchWorker
from lifeline.services.scheduler import BatchScheduler
from lifeline.utils.clock import utcnow


async def load(request_id) -> BloodRequest:
    async with async_session() as session:
        return await session.get(BloodRequest, request_id)


async def tokens_for(request_id):
    async with async_session() as session:
        rows = await session.execute(
            select(ResponseToken.token).where(ResponseToken.request_id == request_id)
        )
        return rows.scalars().all()


async def test_three_of_five_donors_fulfil_request(make_donor, make_request, dispatcher, sms_sender, events):
    donors = [await make_donor(f"Donor {i}") for i in range(5)]
    t0 = utcnow()
    created = await make_request(now=t0, quantity_needed=3, batch_size=1, response_window_minutes=2)

    assert len(created.remaining_donor_queue) == 5

    await dispatcher.send_next_batch(created.id, now=t0)

    request = await load(created.id)
    assert sms_sender.recipients == [donors[0].phone]
    assert len(request.remaining_donor_queue) == 4
    assert request.notified_donor_ids == [str(donors[0].id)]

    scheduler = BatchScheduler(dispatcher, session_factory=async_session)

    # Silence for a full window moves on to donor #2 without re-texting donor #1
    assert await scheduler.check_pending_batches(t0 + timedelta(minutes=2)) == 1
    assert sms_sender.recipients == [donors[0].phone, donors[1].phone]
    request = await load(created.id)
    assert request.notified_donor_ids == [str(donors[0].id), str(donors[1].id)]
    assert len(request.remaining_donor_queue) == 3

    first, second = await tokens_for(created.id)
    async with async_session() as session:
        coordinator = ConfirmationCoordinator(session, events=events)
        assert (await coordinator.confirm_with_token(first, now=t0 + timedelta(minutes=3))).success
    async with async_session() as session:
        coordinator = ConfirmationCoordinator(session, events=events)
        assert (await coordinator.confirm_with_token(second, now=t0 + timedelta(minutes=3))).success

    assert await scheduler.check_pending_batches(t0 + timedelta(minutes=4)) == 1
    assert len(sms_sender.sent) == 3

    async with async_session() as session:
        third = await ConfirmationCoordinator(session, events=events).confirm_donation(
            created.id, now=t0 + timedelta(minutes=5)
        )
    assert third.success
    assert third.request.status == RequestStatus.FULFILLED

    async with async_session() as session:
        fourth = await ConfirmationCoordinator(session, events=events).confirm_donation(
            created.id, now=t0 + timedelta(minutes=5)
        )
    assert not fourth.success
    assert fourth.message == ALREADY_CLOSED_MESSAGE

    # A fulfilled request never texts anyone else
    assert await scheduler.check_pending_batches(t0 + timedelta(minutes=10)) == 0
    assert len(sms_sender.sent) == 3

    request = await load(created.id)
    assert request.confirmed_units == 3
    assert request.batch_in_progress is False


async def test_worker_dispatches_first_batch_after_creation(make_donor, make_request, dispatcher, sms_sender):
    for name in ("Ama", "Kofi", "Esi"):
        await make_donor(name)
    created = await make_request(batch_size=2)

    worker = DispatchWorker(dispatcher, max_attempts=2, backoff_seconds=0)
    worker.start()
    try:
        worker.submit(created.id)
        await worker.join()
    finally:
        await worker.stop()

    assert len(sms_sender.sent) == 2
    assert all("http://donors.test/respond/" in body for _, body in sms_sender.sent)
    request = await load(created.id)
    assert request.batch_in_progress is True
    assert len(request.remaining_donor_queue) == 1
