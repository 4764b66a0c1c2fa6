import asyncio
from uuid import uuid4

from sqlalchemy import select

from lifeline.database import async_session
from lifeline.models.notification import Notification
from lifeline.schemas.base_schema import NotificationType
from lifeline.schemas.notification_schema import NotificationEvent
from lifeline.services.event_sink import EventSink
from lifeline.services.notification_sse import ConnectionManager


async def test_personal_message_reaches_every_stream_of_subscriber():
    manager = ConnectionManager()
    first = await manager.add_sse_connection("hospital-a")
    second = await manager.add_sse_connection("hospital-a")
    other = await manager.add_sse_connection("hospital-b")

    delivered = await manager.send_personal_message("hospital-a", {"title": "hi"})

    assert delivered is True
    assert first.get_nowait() == {"title": "hi"}
    assert second.get_nowait() == {"title": "hi"}
    assert other.empty()


async def test_message_to_unknown_subscriber_is_not_delivered():
    manager = ConnectionManager()
    assert await manager.send_personal_message("nobody", {"title": "hi"}) is False


async def test_disconnect_removes_stream():
    manager = ConnectionManager()
    queue = await manager.add_sse_connection("hospital-a")
    assert manager.get_connection_count("hospital-a") == 1

    await manager.disconnect_sse("hospital-a", queue)

    assert manager.get_connection_count("hospital-a") == 0
    assert manager.get_stats()["total_connections"] == 0


async def test_broadcast_survives_concurrent_disconnects():
    manager = ConnectionManager()
    queues = [await manager.add_sse_connection(f"h{i}") for i in range(20)]

    results = await asyncio.gather(
        manager.broadcast({"title": "all"}),
        *(manager.disconnect_sse(f"h{i}", q) for i, q in enumerate(queues[:10])),
    )

    assert results[0] >= 10
    assert manager.get_stats()["total_connections"] == 10


async def test_event_sink_persists_and_pushes(db_setup, events, connections):
    hospital_id = uuid4()
    queue = await connections.add_sse_connection(str(hospital_id))

    notification = await events.publish(
        NotificationEvent(
            type=NotificationType.SUCCESS,
            title="Donation Confirmed",
            message="A donor confirmed",
            hospital_id=hospital_id,
            meta={"confirmed_units": 1},
        )
    )

    assert notification is not None
    payload = queue.get_nowait()
    assert payload["title"] == "Donation Confirmed"
    assert payload["hospital_id"] == str(hospital_id)
    assert payload["meta"] == {"confirmed_units": 1}

    async with async_session() as session:
        stored = (await session.execute(select(Notification))).scalars().all()
    assert [n.title for n in stored] == ["Donation Confirmed"]


async def test_event_sink_swallows_store_errors(connections):
    class Broken:
        async def __aenter__(self):
            raise RuntimeError("store down")

        async def __aexit__(self, *exc):
            return False

    sink = EventSink(session_factory=Broken, connections=connections)
    assert await sink.publish(NotificationEvent(title="x", message="y")) is None
