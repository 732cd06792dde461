from .config import BroadcasterConfig, HarnessConfig, SubscriberConfig
from .envelope import BenchmarkEnvelope, DEFAULT_PAYLOAD_SIZE
from .messages import (
    BroadcastRequest,
    CableCommand,
    CableFrame,
    CableMessageType,
    PUBSUB_CHANNEL,
    channel_identifier,
)
from .state import BroadcasterState, ConnectionState, SubscriberState

__all__ = [
    "BroadcasterConfig",
    "HarnessConfig",
    "SubscriberConfig",
    "BenchmarkEnvelope",
    "DEFAULT_PAYLOAD_SIZE",
    "BroadcastRequest",
    "CableCommand",
    "CableFrame",
    "CableMessageType",
    "PUBSUB_CHANNEL",
    "channel_identifier",
    "BroadcasterState",
    "ConnectionState",
    "SubscriberState",
]
