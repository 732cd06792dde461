import asyncio
import itertools
import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import ProtocolError, PublishError, TransportError
from ..models.state import ConnectionState
from .base import Delivery, TransportAdapter

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 10.0

_WS_ERRORS = (WebSocketException, OSError, asyncio.TimeoutError)

# Queued into subscription streams when the socket goes away
_CLOSED = object()


class CommandError(Exception):
    """The server replied to a command with an error object."""

    def __init__(self, code: Any, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


def parse_frames(raw: Any) -> List[dict]:
    """
    Split one WebSocket message into protocol frames.

    The JSON protocol may batch several frames into one message,
    separated by newlines.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    frames = []
    for line in raw.split("\n"):
        line = line.strip()
        if not line:
            continue
        try:
            frame = json.loads(line)
        except ValueError as e:
            raise ProtocolError(f"Frame is not valid JSON: {e}") from e
        if not isinstance(frame, dict):
            raise ProtocolError(f"Frame must be a JSON object, got {type(frame).__name__}")
        frames.append(frame)
    return frames


class CentrifugoTransport(TransportAdapter):
    """
    Centrifugo backend over its bidirectional JSON WebSocket protocol.

    The same socket carries commands (connect, subscribe, publish) and
    server pushes. A background reader task:
    - resolves pending commands by reply id
    - answers server pings (empty `{}` frames) with `{}`
    - routes publication pushes to per-channel subscription queues
    - fails everything pending when the socket closes
    """

    name = "centrifugo"

    def __init__(
        self,
        ws_url: str,
        token: Optional[str] = None,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        connector: Callable = websockets.connect,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.ws_url = ws_url
        self.token = token
        self.command_timeout = command_timeout
        self._connector = connector
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._queues: Dict[str, asyncio.Queue] = {}

    def describe(self) -> str:
        return self.ws_url

    async def connect(self) -> None:
        await self._teardown()
        self._closed = False
        self._set_state(ConnectionState.CONNECTING)
        try:
            self._ws = await asyncio.wait_for(self._connector(self.ws_url), self.command_timeout)
        except _WS_ERRORS as e:
            self._set_state(ConnectionState.DISCONNECTED)
            raise TransportError(f"Cannot connect to {self.ws_url}: {e}") from e

        self._reader_task = asyncio.create_task(self._reader())

        params = {"token": self.token} if self.token else {}
        try:
            await self._command("connect", params)
        except (CommandError, TransportError, asyncio.TimeoutError) as e:
            await self._teardown()
            self._set_state(ConnectionState.DISCONNECTED)
            raise TransportError(f"Connect handshake with {self.ws_url} failed: {e}") from e

        self._set_state(ConnectionState.CONNECTED)

    async def _command(self, method: str, params: dict) -> dict:
        """Send one command and wait for its reply."""
        if self._ws is None:
            raise TransportError(f"Not connected to {self.ws_url}")

        command_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[command_id] = future
        try:
            try:
                await self._ws.send(json.dumps({"id": command_id, method: params}))
            except _WS_ERRORS as e:
                raise TransportError(f"Error sending {method}: {e}") from e
            reply = await asyncio.wait_for(future, self.command_timeout)
        finally:
            self._pending.pop(command_id, None)

        error = reply.get("error")
        if error:
            raise CommandError(error.get("code"), error.get("message", ""))
        return reply.get(method, {})

    async def _reader(self) -> None:
        error: Optional[BaseException] = None
        try:
            async for raw in self._ws:
                try:
                    frames = parse_frames(raw)
                except ProtocolError as e:
                    logger.warning(f"Discarding frame from {self.ws_url}: {e}")
                    continue
                for frame in frames:
                    await self._dispatch(frame)
        except ConnectionClosed as e:
            error = e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Reader for {self.ws_url} failed: {e}", exc_info=True)
            error = e
        self._fail_all(error)
        self._connection_lost(error)

    async def _dispatch(self, frame: dict) -> None:
        if not frame:
            # Server ping
            await self._ws.send("{}")
            return

        command_id = frame.get("id")
        if command_id:
            future = self._pending.get(command_id)
            if future is not None and not future.done():
                future.set_result(frame)
            return

        push = frame.get("push")
        if push is None:
            return
        if not isinstance(push, dict) or not isinstance(push.get("pub", {}), dict):
            logger.warning(f"Discarding malformed push from {self.ws_url}: {frame}")
            return
        pub = push.get("pub")
        if pub is None:
            # join/leave and other non-publication pushes
            return
        queue = self._queues.get(push.get("channel"))
        if queue is not None:
            queue.put_nowait(Delivery(payload=pub.get("data"), received_at=self._clock()))

    def _fail_all(self, error: Optional[BaseException]) -> None:
        reason = TransportError(f"Connection to {self.ws_url} closed: {error}")
        for future in self._pending.values():
            if not future.done():
                future.set_exception(reason)
        self._pending.clear()
        for queue in self._queues.values():
            queue.put_nowait(_CLOSED)

    async def publish(self, channel: str, payload: str) -> None:
        if self._state != ConnectionState.CONNECTED:
            raise TransportError(f"Not connected to {self.ws_url}")

        try:
            data = json.loads(payload)
        except ValueError as e:
            raise PublishError(f"Payload for {channel} is not JSON: {e}") from e

        try:
            await self._command("publish", {"channel": channel, "data": data})
        except CommandError as e:
            raise PublishError(f"Error publishing to {channel}: {e}") from e
        except asyncio.TimeoutError as e:
            raise PublishError(f"Publish to {channel} timed out") from e

    async def subscribe(self, channel: str) -> AsyncIterator[Delivery]:
        if self._state != ConnectionState.CONNECTED:
            raise TransportError(f"Not connected to {self.ws_url}")

        queue: asyncio.Queue = asyncio.Queue()
        self._queues[channel] = queue
        try:
            await self._command("subscribe", {"channel": channel})
        except (CommandError, asyncio.TimeoutError) as e:
            self._queues.pop(channel, None)
            raise TransportError(f"Cannot subscribe to {channel}: {e}") from e
        except TransportError:
            self._queues.pop(channel, None)
            raise

        return self._stream(channel, queue)

    async def _stream(self, channel: str, queue: asyncio.Queue) -> AsyncIterator[Delivery]:
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    raise TransportError(f"Subscription to {channel} closed")
                yield item
        finally:
            if self._queues.get(channel) is queue:
                del self._queues[channel]

    async def _teardown(self) -> None:
        reader, self._reader_task = self._reader_task, None
        ws, self._ws = self._ws, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing socket to {self.ws_url}: {e}")

    async def _close(self) -> None:
        self._fail_all(None)
        await self._teardown()
