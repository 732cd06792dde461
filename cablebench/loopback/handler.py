import asyncio
import json
import logging
from typing import Optional
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..models.messages import CABLE_SUBPROTOCOL, CableCommand, CableMessageType, PUBSUB_CHANNEL
from .hub import CableConnection, StreamHub

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 3.0


class CableHandler:
    """
    Speaks the server side of the cable WebSocket protocol.

    Each connection gets:
    - a `welcome` frame on accept
    - a `ping` frame every `ping_interval` seconds
    - `confirm_subscription` / `reject_subscription` replies to subscribe

    `$pubsub` identifiers stream from their `stream_name`; any other
    channel streams from `default_stream`.
    """

    def __init__(self, hub: StreamHub, default_stream: str = "all", ping_interval: float = DEFAULT_PING_INTERVAL):
        self.hub = hub
        self.default_stream = default_stream
        self.ping_interval = ping_interval

    async def handle_connection(self, websocket: WebSocket) -> None:
        subprotocol = CABLE_SUBPROTOCOL if CABLE_SUBPROTOCOL in websocket.scope.get("subprotocols", []) else None
        await websocket.accept(subprotocol=subprotocol)
        connection = CableConnection(uuid4(), websocket)
        logger.info(f"WebSocket connected: {connection.client_id}")

        ping_task: Optional[asyncio.Task] = None
        try:
            await connection.send({"type": CableMessageType.WELCOME.value})
            if self.ping_interval > 0:
                ping_task = asyncio.create_task(self._ping_loop(connection))
            await self._receive_loop(websocket, connection)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected: {connection.client_id}")
        except Exception as e:
            logger.error(f"WebSocket error for {connection.client_id}: {e}")
        finally:
            if ping_task is not None:
                ping_task.cancel()
            self.hub.cleanup(connection)

    async def _ping_loop(self, connection: CableConnection) -> None:
        loop = asyncio.get_running_loop()
        while not connection.is_closed():
            await asyncio.sleep(self.ping_interval)
            await connection.send({"type": CableMessageType.PING.value, "message": int(loop.time())})

    async def _receive_loop(self, websocket: WebSocket, connection: CableConnection) -> None:
        while True:
            raw = await websocket.receive_text()
            await self._handle_message(connection, raw)

    def stream_for(self, identifier: str) -> Optional[str]:
        try:
            params = json.loads(identifier)
        except ValueError:
            return None
        if not isinstance(params, dict) or not params.get("channel"):
            return None
        if params["channel"] == PUBSUB_CHANNEL:
            return params.get("stream_name") or None
        return self.default_stream

    async def _handle_message(self, connection: CableConnection, raw: str) -> None:
        try:
            command = CableCommand.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Invalid command from {connection.client_id}: {e.errors()}")
            return

        if command.command == "subscribe":
            stream = self.stream_for(command.identifier)
            if stream is None:
                await connection.send({
                    "type": CableMessageType.REJECT_SUBSCRIPTION.value,
                    "identifier": command.identifier,
                })
                return
            self.hub.subscribe(stream, connection, command.identifier)
            await connection.send({
                "type": CableMessageType.CONFIRM_SUBSCRIPTION.value,
                "identifier": command.identifier,
            })
        elif command.command == "unsubscribe":
            self.hub.unsubscribe(connection, command.identifier)
        else:
            logger.debug(f"Ignoring {command.command!r} from {connection.client_id}")
