"""Broadcast latency and stall benchmarks for real-time pub/sub backends."""
from .broadcaster import Broadcaster
from .errors import BenchError, InvalidArgument, ProtocolError, PublishError, TransportError
from .harness import Harness
from .models import (
    BenchmarkEnvelope,
    BroadcasterConfig,
    BroadcasterState,
    ConnectionState,
    HarnessConfig,
    SubscriberConfig,
    SubscriberState,
)
from .stall import StallObservation, StallTracker
from .subscriber import Subscriber, SubscriberStats
from .transports import Delivery, TransportAdapter, get_backend
from .utils.payload import generate_random_bytes

__version__ = "1.0.0"

__all__ = [
    "Broadcaster",
    "BenchError",
    "InvalidArgument",
    "ProtocolError",
    "PublishError",
    "TransportError",
    "Harness",
    "BenchmarkEnvelope",
    "BroadcasterConfig",
    "BroadcasterState",
    "ConnectionState",
    "HarnessConfig",
    "SubscriberConfig",
    "SubscriberState",
    "StallObservation",
    "StallTracker",
    "Subscriber",
    "SubscriberStats",
    "Delivery",
    "TransportAdapter",
    "get_backend",
    "generate_random_bytes",
]
