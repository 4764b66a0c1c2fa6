"""
SSE Notification Manager

Registry of live Server-Sent Events subscribers, keyed by subscriber id
(the hospital id the dashboard is watching).
"""

import asyncio
from typing import Dict, List

from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)

QUEUE_MAX_SIZE = 100


class ConnectionManager:
    """Manages SSE connections and pushes events to them"""

    def __init__(self):
        # subscriber_id -> list of queues (one per open stream)
        self._connections: Dict[str, List[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    async def add_sse_connection(self, subscriber_id: str) -> asyncio.Queue:
        """
        Register a new stream for a subscriber.

        Returns:
            asyncio.Queue: Queue the stream reads events from
        """
        async with self._lock:
            queue = asyncio.Queue(maxsize=QUEUE_MAX_SIZE)
            self._connections.setdefault(subscriber_id, []).append(queue)

            logger.info(
                f"SSE connection added for {subscriber_id}. "
                f"Total connections: {len(self._connections[subscriber_id])}"
            )
            return queue

    async def disconnect_sse(self, subscriber_id: str, queue: asyncio.Queue):
        """Remove a stream; drops the subscriber entry once it has none left."""
        async with self._lock:
            queues = self._connections.get(subscriber_id)
            if not queues:
                return
            try:
                queues.remove(queue)
            except ValueError:
                logger.warning(f"Queue not found for {subscriber_id}")
                return

            if not queues:
                del self._connections[subscriber_id]

            logger.info(f"SSE connection removed for {subscriber_id}")

    def get_connection_count(self, subscriber_id: str) -> int:
        return len(self._connections.get(subscriber_id, []))

    async def _snapshot(self, subscriber_id: str = None) -> List[asyncio.Queue]:
        async with self._lock:
            if subscriber_id is not None:
                return list(self._connections.get(subscriber_id, []))
            return [queue for queues in self._connections.values() for queue in queues]

    @staticmethod
    def _deliver(queues: List[asyncio.Queue], message: dict) -> int:
        sent_count = 0
        for queue in queues:
            try:
                queue.put_nowait(message)
                sent_count += 1
            except asyncio.QueueFull:
                logger.warning("SSE queue full, dropping event for a slow subscriber")
        return sent_count

    async def send_personal_message(self, subscriber_id: str, message: dict) -> bool:
        """
        Send a message to every stream of one subscriber.

        Returns:
            bool: True if message was queued on at least one stream
        """
        queues = await self._snapshot(subscriber_id)
        if not queues:
            logger.debug(f"No connections found for {subscriber_id}")
            return False

        sent_count = self._deliver(queues, message)
        logger.debug(f"Message sent to {sent_count} connections for {subscriber_id}")
        return sent_count > 0

    async def broadcast(self, message: dict) -> int:
        """
        Send a message to every open stream.

        Returns:
            int: Number of streams the message was queued on
        """
        sent_count = self._deliver(await self._snapshot(), message)
        logger.info(f"Broadcast message sent to {sent_count} connections")
        return sent_count

    def get_stats(self) -> dict:
        return {
            "total_connections": sum(len(q) for q in self._connections.values()),
            "subscribers": list(self._connections.keys()),
        }


# Global connection manager instance
manager = ConnectionManager()


__all__ = ["ConnectionManager", "manager"]
