"""
Tests for the loopback cable broker.
"""
import asyncio
import json
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from cablebench.loopback import create_app
from cablebench.loopback.hub import CableConnection, StreamHub
from cablebench.models.messages import CABLE_SUBPROTOCOL, channel_identifier

PUBSUB_ALL = channel_identifier("$pubsub", "all")


@pytest.fixture
def client():
    with TestClient(create_app(ping_interval=0)) as client:
        yield client


def subscribe(ws, identifier: str) -> dict:
    ws.send_json({"command": "subscribe", "identifier": identifier})
    return ws.receive_json()


def test_welcome_and_subscription(client):
    with client.websocket_connect("/cable", subprotocols=[CABLE_SUBPROTOCOL]) as ws:
        assert ws.receive_json() == {"type": "welcome"}
        assert subscribe(ws, PUBSUB_ALL) == {"type": "confirm_subscription", "identifier": PUBSUB_ALL}

        response = client.post("/_broadcast", json={"stream": "all", "data": '{"count": 1}'})
        assert response.status_code == 201
        assert response.json() == {"stream": "all", "delivered": 1}

        assert ws.receive_json() == {"identifier": PUBSUB_ALL, "message": {"count": 1}}


def test_named_channel_streams_default(client):
    identifier = channel_identifier("BenchmarkChannel")
    with client.websocket_connect("/cable") as ws:
        ws.receive_json()
        assert subscribe(ws, identifier)["type"] == "confirm_subscription"

        client.post("/_broadcast", json={"stream": "all", "data": "plain text"})

        assert ws.receive_json() == {"identifier": identifier, "message": "plain text"}


@pytest.mark.parametrize("identifier", ["not json", '{"channel": "$pubsub"}', '{"stream_name": "all"}'])
def test_invalid_identifier_rejected(client, identifier):
    with client.websocket_connect("/cable") as ws:
        ws.receive_json()
        assert subscribe(ws, identifier) == {"type": "reject_subscription", "identifier": identifier}


def test_unsubscribe_stops_delivery(client):
    with client.websocket_connect("/cable") as ws:
        ws.receive_json()
        subscribe(ws, PUBSUB_ALL)
        ws.send_json({"command": "unsubscribe", "identifier": PUBSUB_ALL})
        # confirmation of a later command means the unsubscribe was handled
        subscribe(ws, channel_identifier("$pubsub", "other"))

        response = client.post("/_broadcast", json={"stream": "all", "data": "{}"})

        assert response.json()["delivered"] == 0


def test_broadcast_rejects_invalid_stream(client):
    assert client.post("/_broadcast", json={"stream": "bad stream", "data": "{}"}).status_code == 400
    assert client.post("/_broadcast", json={"stream": "", "data": "{}"}).status_code == 422


def test_health(client):
    with client.websocket_connect("/cable") as ws:
        ws.receive_json()
        subscribe(ws, PUBSUB_ALL)

        body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["streams"] == ["all"]
    assert body["subscriber_count"] == 1


class RecordingSocket:
    def __init__(self, delay: float = 0):
        self.delay = delay
        self.frames = []

    async def send_json(self, frame):
        await asyncio.sleep(self.delay)
        self.frames.append(frame)


@pytest.mark.asyncio
async def test_hub_drops_slow_connections():
    hub = StreamHub(send_timeout_ms=50)
    fast = CableConnection(uuid4(), RecordingSocket())
    slow = CableConnection(uuid4(), RecordingSocket(delay=1))
    hub.subscribe("all", fast, PUBSUB_ALL)
    hub.subscribe("all", slow, PUBSUB_ALL)

    delivered = await hub.broadcast("all", {"count": 1})

    assert delivered == 1
    assert fast.websocket.frames == [{"identifier": PUBSUB_ALL, "message": {"count": 1}}]
    assert slow.is_closed()
    assert hub.subscriber_count("all") == 1
    assert hub.broadcast_count == 1


@pytest.mark.asyncio
async def test_hub_broadcast_without_subscribers():
    hub = StreamHub()

    assert await hub.broadcast("nobody", json.dumps({"count": 1})) == 0
    assert hub.list_streams() == []
