import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID

logger = logging.getLogger(__name__)


class CableConnection:
    """
    One accepted cable WebSocket.

    Tracks the identifiers the client subscribed to and serializes
    sends. A failed send marks the connection closed and the hub drops it.
    """

    def __init__(self, client_id: UUID, websocket: Any):
        self.client_id = client_id
        self.websocket = websocket
        self.identifiers: Set[str] = set()
        self._closed = False
        self._send_lock = asyncio.Lock()

    def close(self) -> None:
        self._closed = True

    def is_closed(self) -> bool:
        return self._closed

    async def send(self, frame: dict) -> bool:
        if self._closed:
            return False
        try:
            async with self._send_lock:
                await self.websocket.send_json(frame)
            return True
        except Exception as e:
            logger.error(f"Failed to send to {self.client_id}: {e}")
            self._closed = True
            return False


class StreamHub:
    """
    In-memory stream registry for the loopback broker.

    A broadcast fans out to every (connection, identifier) pair
    subscribed to the stream, concurrently. Sends that exceed
    `send_timeout_ms` close the connection so a slow client never holds
    up the others.
    """

    def __init__(self, send_timeout_ms: int = 500):
        self._streams: Dict[str, Dict[Tuple[UUID, str], CableConnection]] = {}
        self._send_timeout_ms = send_timeout_ms
        self.broadcast_count = 0

    def subscribe(self, stream: str, connection: CableConnection, identifier: str) -> None:
        self._streams.setdefault(stream, {})[(connection.client_id, identifier)] = connection
        connection.identifiers.add(identifier)
        logger.info(f"{connection.client_id} streaming from {stream}")

    def unsubscribe(self, connection: CableConnection, identifier: str) -> bool:
        removed = False
        for subscribers in self._streams.values():
            if subscribers.pop((connection.client_id, identifier), None) is not None:
                removed = True
        connection.identifiers.discard(identifier)
        return removed

    def cleanup(self, connection: CableConnection) -> None:
        """Remove a connection from all streams. Called on disconnect."""
        for subscribers in self._streams.values():
            for key in [k for k in subscribers if k[0] == connection.client_id]:
                del subscribers[key]
        connection.close()

    def subscriber_count(self, stream: Optional[str] = None) -> int:
        if stream is not None:
            return len(self._streams.get(stream, {}))
        return sum(len(s) for s in self._streams.values())

    def list_streams(self) -> List[str]:
        return [name for name, subscribers in self._streams.items() if subscribers]

    async def broadcast(self, stream: str, message: Any) -> int:
        """Deliver `message` to every subscriber of `stream`. Returns the delivery count."""
        self.broadcast_count += 1
        targets = list(self._streams.get(stream, {}).items())
        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._send_with_timeout(conn, {"identifier": identifier, "message": message})
              for (_, identifier), conn in targets),
            return_exceptions=True,
        )

        delivered = 0
        for (_, conn), result in zip(targets, results):
            if result is True:
                delivered += 1
            else:
                self.cleanup(conn)
        return delivered

    async def _send_with_timeout(self, connection: CableConnection, frame: dict) -> bool:
        try:
            return await asyncio.wait_for(connection.send(frame), timeout=self._send_timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            logger.warning(
                f"Subscriber {connection.client_id} too slow, disconnecting "
                f"(timeout: {self._send_timeout_ms}ms)"
            )
            connection.close()
            return False
