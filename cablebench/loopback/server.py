"""
Loopback broker: an in-memory stand-in for an AnyCable server.

Accepts HTTP broadcasts on `POST /_broadcast` and relays them over the
cable WebSocket protocol on `/cable`. Meant for local dry runs of the
harness, not as a production broker.
"""
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket, status

from ..models.messages import BroadcastRequest
from ..utils.time_utils import get_current_timestamp
from ..utils.validation import validate_channel_name
from .handler import DEFAULT_PING_INTERVAL, CableHandler
from .hub import StreamHub

logger = logging.getLogger(__name__)


def _decode_data(data: str):
    # Relay JSON payloads as objects, anything else as the raw string
    try:
        return json.loads(data)
    except ValueError:
        return data


def create_app(ping_interval: float = DEFAULT_PING_INTERVAL, send_timeout_ms: int = 500) -> FastAPI:
    hub = StreamHub(send_timeout_ms=send_timeout_ms)
    handler = CableHandler(hub, ping_interval=ping_interval)
    start_time = get_current_timestamp()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Loopback broker starting up")
        yield
        logger.info("Loopback broker shutting down")

    app = FastAPI(title="cablebench loopback broker", version="1.0.0", lifespan=lifespan)
    app.state.hub = hub

    @app.post("/_broadcast", status_code=status.HTTP_201_CREATED)
    async def broadcast(request: BroadcastRequest) -> dict:
        if not validate_channel_name(request.stream):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid stream name: {request.stream!r}",
            )
        delivered = await hub.broadcast(request.stream, _decode_data(request.data))
        return {"stream": request.stream, "delivered": delivered}

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "healthy",
            "uptime_seconds": get_current_timestamp() - start_time,
            "streams": hub.list_streams(),
            "subscriber_count": hub.subscriber_count(),
            "broadcast_count": hub.broadcast_count,
        }

    @app.websocket("/cable")
    async def cable(websocket: WebSocket):
        await handler.handle_connection(websocket)

    return app


def run(host: str = "127.0.0.1", port: int = 8080, log_level: str = "info") -> None:
    import uvicorn

    uvicorn.run(create_app(), host=host, port=port, log_level=log_level)
