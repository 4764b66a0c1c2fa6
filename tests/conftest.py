"""
Test configuration and fixtures for the blood request engine.
Provides a throwaway SQLite database, a recording SMS sender and data
factories for donors and requests.
"""

import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional, Tuple
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

# A file database (not :memory:) so concurrent sessions see the same data
TEST_DB_DIR = tempfile.mkdtemp(prefix="lifeline-tests-")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{Path(TEST_DB_DIR) / 'test.sqlite3'}"

# Override environment variables for testing
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SMS_PROVIDER"] = "console"
os.environ["RESPONSE_BASE_URL"] = "http://donors.test"

from lifeline.database import async_session, engine  # noqa: E402
from lifeline.db.base import Base  # noqa: E402
from lifeline.dependencies import get_dispatch_worker  # noqa: E402
from lifeline.main import app  # noqa: E402
from lifeline.models.donor import Donor  # noqa: E402
from lifeline.schemas.base_schema import BloodGroup, Urgency  # noqa: E402
from lifeline.schemas.request import BloodRequestCreate  # noqa: E402
from lifeline.services.blood_request import BloodRequestService  # noqa: E402
from lifeline.services.dispatcher import NotificationDispatcher  # noqa: E402
from lifeline.services.event_sink import EventSink  # noqa: E402
from lifeline.services.notification_sse import ConnectionManager  # noqa: E402
from lifeline.services.sms import SendOutcome  # noqa: E402
from lifeline.services.templates import MessageTemplates  # noqa: E402
from lifeline.utils.clock import utcnow  # noqa: E402


class RecordingSmsSender:
    """SMS sender double. Phones in ``failing`` get a failed outcome,
    phones in ``raising`` blow up."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.failing = set()
        self.raising = set()

    async def send(self, to: str, body: str) -> SendOutcome:
        if to in self.raising:
            raise RuntimeError(f"transport exploded for {to}")
        if to in self.failing:
            return SendOutcome(success=False, error="undeliverable")
        self.sent.append((to, body))
        return SendOutcome(success=True, message_id=f"test_{len(self.sent)}")

    @property
    def recipients(self) -> List[str]:
        return [to for to, _ in self.sent]


class RecordingWorker:
    """Stands in for the dispatch worker in HTTP tests."""

    def __init__(self):
        self.submitted = []

    def submit(self, request_id):
        self.submitted.append(request_id)


@pytest.fixture
async def db_setup() -> AsyncGenerator[None, None]:
    """Fresh schema per test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def db_session(db_setup):
    async with async_session() as session:
        yield session


@pytest.fixture
def sms_sender() -> RecordingSmsSender:
    return RecordingSmsSender()


@pytest.fixture
def connections() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def events(connections) -> EventSink:
    return EventSink(session_factory=async_session, connections=connections)


@pytest.fixture
def dispatcher(sms_sender, events) -> NotificationDispatcher:
    return NotificationDispatcher(
        sender=sms_sender,
        templates=MessageTemplates.from_settings(),
        events=events,
        session_factory=async_session,
        response_base_url="http://donors.test",
    )


@pytest.fixture
def make_donor(db_setup):
    counter = {"n": 0}

    async def factory(
        name: str,
        blood_group: str = "O+",
        phone: Optional[str] = "auto",
        last_donation_date: Optional[datetime] = None,
    ) -> Donor:
        counter["n"] += 1
        if phone == "auto":
            phone = f"+23324000{counter['n']:04d}"
        async with async_session() as session:
            donor = Donor(
                name=name,
                phone=phone,
                blood_group=blood_group,
                last_donation_date=last_donation_date,
                # Distinct timestamps keep directory order deterministic
                created_at=utcnow() + timedelta(microseconds=counter["n"]),
            )
            session.add(donor)
            await session.commit()
            await session.refresh(donor)
            return donor

    return factory


@pytest.fixture
def make_request(db_setup, events):
    async def factory(now: datetime = None, **overrides):
        now = now or utcnow()
        payload: Dict = {
            "hospital_id": uuid4(),
            "hospital_name": "Korle Bu Teaching Hospital",
            "blood_group": BloodGroup.O_POSITIVE,
            "quantity_needed": 3,
            "urgency": Urgency.HIGH,
            "required_by": now + timedelta(hours=6),
            "batch_size": 1,
            "response_window_minutes": 2,
        }
        payload.update(overrides)
        async with async_session() as session:
            service = BloodRequestService(session, events=events)
            return await service.create_request(BloodRequestCreate(**payload), now=now)

    return factory


@pytest.fixture
def worker_stub() -> RecordingWorker:
    return RecordingWorker()


@pytest.fixture
async def client(db_setup, worker_stub) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_dispatch_worker] = lambda: worker_stub
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()
