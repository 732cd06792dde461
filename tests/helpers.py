import asyncio
import json
from typing import List, Optional, Tuple

from websockets.exceptions import ConnectionClosed

from cablebench.errors import TransportError
from cablebench.models.state import ConnectionState
from cablebench.transports.base import Delivery, TransportAdapter

_CLOSE = object()


def envelope_payload(sequence: int, timestamp_ms: float = 1_700_000_000_000, filler: str = "ab") -> str:
    return json.dumps({"count": sequence, "timestamp": timestamp_ms, "value": filler})


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


class FakeTransport(TransportAdapter):
    """In-memory transport driven directly by tests."""

    name = "fake"

    def __init__(self, fail_connects: int = 0):
        super().__init__()
        self.fail_connects = fail_connects
        self.connect_calls = 0
        self.close_calls = 0
        self.published: List[Tuple[str, str]] = []
        self.subscribed: List[str] = []
        self.publish_error: Optional[Exception] = None
        self._queue: Optional[asyncio.Queue] = None

    def describe(self) -> str:
        return "fake://test"

    async def connect(self) -> None:
        self.connect_calls += 1
        self._closed = False
        self._set_state(ConnectionState.CONNECTING)
        if self.fail_connects > 0:
            self.fail_connects -= 1
            self._set_state(ConnectionState.DISCONNECTED)
            raise TransportError("Connection refused")
        self._queue = asyncio.Queue()
        self._set_state(ConnectionState.CONNECTED)

    async def publish(self, channel: str, payload: str) -> None:
        if self._state != ConnectionState.CONNECTED:
            raise TransportError("Not connected")
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((channel, payload))

    async def subscribe(self, channel: str):
        self.subscribed.append(channel)
        return self._stream(self._queue)

    async def _stream(self, queue: asyncio.Queue):
        while True:
            item = await queue.get()
            if item is _CLOSE:
                raise TransportError("Connection closed")
            if isinstance(item, Exception):
                raise item
            yield item

    def deliver(self, payload, received_at: float) -> None:
        self._queue.put_nowait(Delivery(payload=payload, received_at=received_at))

    def fail_stream(self, exc: Exception) -> None:
        self._queue.put_nowait(exc)

    def simulate_disconnect(self) -> None:
        if self._queue is not None:
            self._queue.put_nowait(_CLOSE)
        self._connection_lost(TransportError("Connection reset by peer"))

    async def _close(self) -> None:
        self.close_calls += 1
        if self._queue is not None:
            self._queue.put_nowait(_CLOSE)


class FakeWebSocket:
    """Scripted client-side WebSocket: tests push server frames, inspect sent ones."""

    def __init__(self, frames=()):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: List[str] = []
        self.closed = False
        for frame in frames:
            self.push(frame)

    def push(self, frame) -> None:
        self.incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        self.incoming.put_nowait(_CLOSE)

    async def recv(self):
        item = await self.incoming.get()
        if item is _CLOSE:
            raise ConnectionClosed(None, None)
        return item

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosed(None, None)
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self.incoming.put_nowait(_CLOSE)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            try:
                yield await self.recv()
            except ConnectionClosed:
                return

    def sent_json(self) -> list:
        return [json.loads(m) for m in self.sent]


def connector_for(websocket: FakeWebSocket):
    async def connect(url):
        return websocket
    return connect
