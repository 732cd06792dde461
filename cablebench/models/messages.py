import json
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CableMessageType(str, Enum):
    WELCOME = "welcome"
    PING = "ping"
    CONFIRM_SUBSCRIPTION = "confirm_subscription"
    REJECT_SUBSCRIPTION = "reject_subscription"
    DISCONNECT = "disconnect"


# Frames that never carry application payloads
CONTROL_TYPES = frozenset({
    CableMessageType.WELCOME.value,
    CableMessageType.PING.value,
    CableMessageType.CONFIRM_SUBSCRIPTION.value,
})

PUBSUB_CHANNEL = "$pubsub"

CABLE_SUBPROTOCOL = "actioncable-v1-json"


def channel_identifier(channel: str, stream_name: Optional[str] = None) -> str:
    """
    Build a cable channel identifier the way the JS client serializes it.

    `channel_identifier("BenchmarkChannel")` -> '{"channel":"BenchmarkChannel"}'
    `channel_identifier("$pubsub", "all")`  -> '{"channel":"$pubsub","stream_name":"all"}'
    """
    identifier: Dict[str, str] = {"channel": channel}
    if stream_name is not None:
        identifier["stream_name"] = stream_name
    return json.dumps(identifier, separators=(",", ":"))


class CableCommand(BaseModel):
    """Client -> server cable frame."""
    command: str
    identifier: str
    data: Optional[str] = None

    def serialize(self) -> str:
        return self.model_dump_json(exclude_none=True)


class CableFrame(BaseModel):
    """Server -> client cable frame (control or broadcast)."""
    type: Optional[str] = None
    identifier: Optional[str] = None
    message: Any = None
    reason: Optional[str] = None
    reconnect: Optional[bool] = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow")

    @property
    def is_control(self) -> bool:
        return self.type in CONTROL_TYPES


class BroadcastRequest(BaseModel):
    """Body of an HTTP broadcast call (`POST /_broadcast`)."""
    stream: str = Field(..., min_length=1, max_length=255)
    data: str
    meta: Optional[Dict[str, Any]] = None
