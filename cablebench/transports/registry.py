"""
Backend profiles: which transport each side of a benchmark uses, and the
default ports of the stock setups.
"""
import os
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..errors import InvalidArgument
from .base import TransportAdapter
from .cable import CableTransport
from .centrifugo import CentrifugoTransport
from .redis_pubsub import DEFAULT_REDIS_PORT, RedisTransport

TransportFactory = Callable[..., TransportAdapter]

BACKEND_NAMES = ("actioncable", "anycable", "centrifugo")


@dataclass(frozen=True)
class BackendProfile:
    name: str
    label: str
    broadcast_port: int
    standard_port: int
    slow_port: int
    broadcaster_factory: TransportFactory
    subscriber_factory: TransportFactory
    broadcast_channel: str = "all"
    subscribe_channel: str = "all"

    def broadcaster_transport(self, host: str, port: Optional[int] = None, **options) -> TransportAdapter:
        return self.broadcaster_factory(host, port or self.broadcast_port, **options)

    def subscriber_transport(self, host: str, port: int, **options) -> TransportAdapter:
        return self.subscriber_factory(host, port, **options)


def _redis_publisher(host: str, port: int, **options) -> TransportAdapter:
    return RedisTransport(host=host, port=port, **options)


def _action_cable_subscriber(host: str, port: int, **options) -> TransportAdapter:
    return CableTransport(
        ws_url=f"ws://{host}:{port}/cable",
        identifier_channel="BenchmarkChannel",
        **options,
    )


def _anycable_publisher(host: str, port: int, **options) -> TransportAdapter:
    return CableTransport(broadcast_url=f"http://{host}:{port}/_broadcast", **options)


def _anycable_subscriber(host: str, port: int, **options) -> TransportAdapter:
    return CableTransport(ws_url=f"ws://{host}:{port}/cable", **options)


def _centrifugo_client(host: str, port: int, **options) -> TransportAdapter:
    return CentrifugoTransport(ws_url=f"ws://{host}:{port}/connection/websocket", **options)


def _build_backends() -> Dict[str, BackendProfile]:
    redis_port = int(os.getenv("REDIS_PORT", DEFAULT_REDIS_PORT))
    return {
        "actioncable": BackendProfile(
            name="actioncable",
            label="Action Cable Redis Broadcaster",
            broadcast_port=redis_port,
            standard_port=8080,
            slow_port=8081,
            broadcaster_factory=_redis_publisher,
            subscriber_factory=_action_cable_subscriber,
        ),
        "anycable": BackendProfile(
            name="anycable",
            label="AnyCable Broadcaster",
            broadcast_port=8090,
            standard_port=8080,
            slow_port=8081,
            broadcaster_factory=_anycable_publisher,
            subscriber_factory=_anycable_subscriber,
        ),
        "centrifugo": BackendProfile(
            name="centrifugo",
            label="Centrifugo Broadcaster",
            broadcast_port=8010,
            standard_port=8010,
            slow_port=8011,
            broadcaster_factory=_centrifugo_client,
            subscriber_factory=_centrifugo_client,
        ),
    }


def get_backend(name: str) -> BackendProfile:
    backends = _build_backends()
    try:
        return backends[name]
    except KeyError:
        raise InvalidArgument(
            f"Unknown backend {name!r}, expected one of: {', '.join(sorted(backends))}"
        ) from None


def backend_names():
    return list(BACKEND_NAMES)
