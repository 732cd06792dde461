from .base import Delivery, TransportAdapter
from .cable import CableTransport
from .centrifugo import CentrifugoTransport
from .redis_pubsub import RedisTransport
from .registry import BackendProfile, backend_names, get_backend

__all__ = [
    "Delivery",
    "TransportAdapter",
    "CableTransport",
    "CentrifugoTransport",
    "RedisTransport",
    "BackendProfile",
    "backend_names",
    "get_backend",
]
