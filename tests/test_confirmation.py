"""Atomic confirmations: no overbooking, terminal stickiness, single-use tokens."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from lifeline.database import async_session
from lifeline.exceptions import (
    ALREADY_CLOSED_MESSAGE,
    RequestNotFoundError,
    ResponseTokenNotFoundError,
)
from lifeline.models.blood_request import BloodRequest
from lifeline.models.notification import Notification
from lifeline.models.response_token import ResponseToken
from lifeline.schemas.base_schema import RequestStatus
from lifeline.services.confirmation import ConfirmationCoordinator
from lifeline.services.lifecycle import RequestLifecycle
from lifeline.utils.clock import utcnow


async def confirm(request_id, events, now=None):
    async with async_session() as session:
        return await ConfirmationCoordinator(session, events=events).confirm_donation(
            request_id, now=now
        )


async def confirm_token(token, events, now=None):
    async with async_session() as session:
        return await ConfirmationCoordinator(session, events=events).confirm_with_token(
            token, now=now
        )


async def load(request_id) -> BloodRequest:
    async with async_session() as session:
        return await session.get(BloodRequest, request_id)


async def test_confirmation_increments_and_fulfils(make_request, events):
    created = await make_request(quantity_needed=2)

    first = await confirm(created.id, events)
    assert first.success
    assert first.message == "Donation confirmed successfully."
    assert first.request.confirmed_units == 1
    assert first.request.status == RequestStatus.ACTIVE

    second = await confirm(created.id, events)
    assert second.success
    assert second.request.confirmed_units == 2
    assert second.request.status == RequestStatus.FULFILLED
    assert second.request.batch_in_progress is False

    third = await confirm(created.id, events)
    assert not third.success
    assert third.message == ALREADY_CLOSED_MESSAGE
    assert (await load(created.id)).confirmed_units == 2


async def test_concurrent_confirmations_never_overbook(make_request, events):
    created = await make_request(quantity_needed=3)

    results = await asyncio.gather(*(confirm(created.id, events) for _ in range(10)))

    assert sum(1 for r in results if r.success) == 3
    assert all(r.message == ALREADY_CLOSED_MESSAGE for r in results if not r.success)

    request = await load(created.id)
    assert request.confirmed_units == 3
    assert request.status == RequestStatus.FULFILLED


async def test_confirmation_after_deadline_expires_request(make_request, events):
    now = utcnow()
    created = await make_request(now=now, required_by=now + timedelta(minutes=30))

    result = await confirm(created.id, events, now=now + timedelta(hours=1))

    assert not result.success
    assert result.request.status == RequestStatus.EXPIRED
    assert (await load(created.id)).confirmed_units == 0


async def test_cancelled_request_rejects_confirmation(make_request, events):
    created = await make_request()
    async with async_session() as session:
        await RequestLifecycle(session).cancel(created.id)

    result = await confirm(created.id, events)

    assert not result.success
    assert (await load(created.id)).status == RequestStatus.CANCELLED


async def test_unknown_request_raises(db_setup, events):
    with pytest.raises(RequestNotFoundError):
        await confirm(uuid4(), events)


async def test_confirmation_events_are_recorded(make_request, events):
    created = await make_request(quantity_needed=1)
    await confirm(created.id, events)

    async with async_session() as session:
        titles = (
            await session.execute(
                select(Notification.title).where(Notification.request_id == created.id)
            )
        ).scalars().all()
    assert "Donation Confirmed" in titles
    assert "Blood Request Fulfilled" in titles


async def issue_token(request_id, donor_id=None) -> str:
    token = f"tok-{uuid4().hex}"
    async with async_session() as session:
        session.add(
            ResponseToken(token=token, request_id=request_id, donor_id=donor_id or uuid4())
        )
        await session.commit()
    return token


async def test_token_is_single_use(make_request, events):
    created = await make_request(quantity_needed=3)
    token = await issue_token(created.id)

    first = await confirm_token(token, events)
    second = await confirm_token(token, events)

    assert first.success
    assert not second.success
    assert (await load(created.id)).confirmed_units == 1


async def test_rejected_token_confirmation_leaves_token_unused(make_request, events):
    now = utcnow()
    created = await make_request(now=now, required_by=now + timedelta(minutes=30))
    token = await issue_token(created.id)

    result = await confirm_token(token, events, now=now + timedelta(hours=1))

    assert not result.success
    async with async_session() as session:
        stored = await session.scalar(select(ResponseToken).where(ResponseToken.token == token))
    assert stored.consumed_at is None


async def test_unknown_token_raises(db_setup, events):
    with pytest.raises(ResponseTokenNotFoundError):
        await confirm_token("does-not-exist", events)
