import asyncio
import functools
import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional

import httpx
import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import ProtocolError, PublishError, TransportError
from ..models.messages import (
    CABLE_SUBPROTOCOL,
    CableCommand,
    CableFrame,
    CableMessageType,
    PUBSUB_CHANNEL,
    channel_identifier,
)
from ..models.state import ConnectionState
from .base import Delivery, TransportAdapter

logger = logging.getLogger(__name__)

DEFAULT_HANDSHAKE_TIMEOUT = 10.0

_WS_ERRORS = (WebSocketException, OSError, asyncio.TimeoutError)

default_connector = functools.partial(websockets.connect, subprotocols=[CABLE_SUBPROTOCOL])


def parse_cable_frame(raw: Any) -> CableFrame:
    """Decode one server frame. Raises ProtocolError on malformed input."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Cable frame is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"Cable frame must be a JSON object, got {type(data).__name__}")
    try:
        return CableFrame.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Malformed cable frame: {e.errors()}") from e


class CableTransport(TransportAdapter):
    """
    Action Cable / AnyCable backend.

    Publishing goes through the HTTP broadcast endpoint
    (`POST {"stream", "data", "meta"?}`); receiving goes through the
    cable WebSocket protocol. Either side may be left unconfigured: the
    broadcaster only needs `broadcast_url`, subscribers only `ws_url`.

    ORDERING: frames are read from a single socket and yielded as they
    arrive, so delivery order matches the server's send order.
    """

    name = "cable"

    def __init__(
        self,
        ws_url: Optional[str] = None,
        broadcast_url: Optional[str] = None,
        identifier_channel: str = PUBSUB_CHANNEL,
        secret: Optional[str] = None,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        connector: Callable = default_connector,
        http_client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if ws_url is None and broadcast_url is None:
            raise ValueError("CableTransport needs a ws_url, a broadcast_url, or both")
        self.ws_url = ws_url
        self.broadcast_url = broadcast_url
        self.identifier_channel = identifier_channel
        self.handshake_timeout = handshake_timeout
        self._connector = connector
        self._http = http_client
        self._owns_http = http_client is None
        self._ws = None

        self._headers: Dict[str, str] = {"Content-Type": "application/json"}
        if secret:
            self._headers["Authorization"] = f"Bearer {secret}"

    def describe(self) -> str:
        return self.ws_url or self.broadcast_url

    def identifier_for(self, channel: str) -> str:
        # Named channels (e.g. BenchmarkChannel) stream on their own;
        # $pubsub needs the stream name
        if self.identifier_channel == PUBSUB_CHANNEL:
            return channel_identifier(PUBSUB_CHANNEL, channel)
        return channel_identifier(self.identifier_channel)

    async def connect(self) -> None:
        await self._close_ws()
        self._closed = False
        self._set_state(ConnectionState.CONNECTING)

        if self.broadcast_url and self._http is None:
            self._http = httpx.AsyncClient(timeout=self.handshake_timeout)
            self._owns_http = True

        if self.ws_url:
            try:
                self._ws = await asyncio.wait_for(self._connector(self.ws_url), self.handshake_timeout)
                await asyncio.wait_for(self._await_welcome(), self.handshake_timeout)
            except _WS_ERRORS as e:
                await self._close_ws()
                self._set_state(ConnectionState.DISCONNECTED)
                raise TransportError(f"Cannot connect to {self.ws_url}: {e}") from e

        self._set_state(ConnectionState.CONNECTED)

    async def _await_welcome(self) -> None:
        while True:
            frame = await self._next_frame()
            if frame is None:
                continue
            if frame.type == CableMessageType.WELCOME:
                return
            if frame.type == CableMessageType.DISCONNECT:
                raise TransportError(f"Server refused connection: {frame.reason}")

    async def _next_frame(self) -> Optional[CableFrame]:
        """Read one frame; malformed frames are logged and skipped (None)."""
        raw = await self._ws.recv()
        try:
            return parse_cable_frame(raw)
        except ProtocolError as e:
            logger.warning(f"Discarding frame from {self.ws_url}: {e}")
            return None

    async def publish(self, channel: str, payload: str, meta: Optional[Dict[str, Any]] = None) -> None:
        if self._http is None or not self.broadcast_url:
            raise TransportError("No broadcast endpoint configured")

        body: Dict[str, Any] = {"stream": channel, "data": payload}
        if meta:
            body["meta"] = meta

        try:
            response = await self._http.post(self.broadcast_url, json=body, headers=self._headers)
        except httpx.TransportError as e:
            raise TransportError(f"Error broadcasting to {channel}: {e}") from e

        if not response.is_success:
            raise PublishError(f"Error broadcasting to {channel}: {response.status_code} {response.reason_phrase}")

    async def subscribe(self, channel: str) -> AsyncIterator[Delivery]:
        if self._ws is None or self._state != ConnectionState.CONNECTED:
            raise TransportError(f"Not connected to {self.describe()}")

        identifier = self.identifier_for(channel)
        command = CableCommand(command="subscribe", identifier=identifier)
        try:
            await self._ws.send(command.serialize())
            await asyncio.wait_for(self._await_confirmation(identifier), self.handshake_timeout)
        except _WS_ERRORS as e:
            self._connection_lost(e)
            raise TransportError(f"Cannot subscribe to {identifier}: {e}") from e

        logger.debug(f"Subscribed with: {command.serialize()}")
        return self._stream(identifier)

    async def _await_confirmation(self, identifier: str) -> None:
        while True:
            frame = await self._next_frame()
            if frame is None or frame.identifier != identifier:
                continue
            if frame.type == CableMessageType.CONFIRM_SUBSCRIPTION:
                return
            if frame.type == CableMessageType.REJECT_SUBSCRIPTION:
                raise TransportError(f"Subscription rejected: {identifier}")

    async def _stream(self, identifier: str) -> AsyncIterator[Delivery]:
        try:
            while True:
                frame = await self._next_frame()
                if frame is None or frame.is_control:
                    continue
                if frame.type == CableMessageType.DISCONNECT:
                    raise TransportError(f"Server disconnected: {frame.reason}")
                if frame.identifier != identifier or frame.message is None:
                    continue
                yield Delivery(payload=frame.message, received_at=self._clock())
        except ConnectionClosed as e:
            self._connection_lost(e)
            raise TransportError(f"Connection to {self.ws_url} closed: {e}") from e
        except TransportError as e:
            self._connection_lost(e)
            raise

    async def _close_ws(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing socket to {self.ws_url}: {e}")

    async def _close(self) -> None:
        try:
            await self._close_ws()
        finally:
            http, self._http = self._http, None
            if http is not None and self._owns_http:
                await http.aclose()
