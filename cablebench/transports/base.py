import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, List, Optional

from ..models.state import ConnectionState

logger = logging.getLogger(__name__)

DisconnectCallback = Callable[[Optional[BaseException]], None]


@dataclass(frozen=True)
class Delivery:
    """An application payload as received from a backend."""
    payload: Any
    received_at: float


class TransportAdapter(ABC):
    """
    Pluggable connection to one pub/sub backend.

    Capabilities:
    - connect(): establish the session; raises TransportError
    - publish(channel, payload): raises PublishError (single failure)
      or TransportError (connection lost)
    - subscribe(channel): waits for the backend's subscription
      confirmation and returns a lazy, infinite, non-restartable stream
      of Delivery objects; the stream raises TransportError when the
      connection is lost
    - close(): idempotent, never raises

    Control frames (welcome, ping, confirmations) are handled here and
    never reach the stream. Deliveries are yielded in arrival order.

    Unexpected connection loss is reported to every callback registered
    with on_disconnect(). An explicit close() does not notify.
    """

    name = "transport"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._clock = clock
        self._disconnect_callbacks: List[DisconnectCallback] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def on_disconnect(self, callback: DisconnectCallback) -> None:
        self._disconnect_callbacks.append(callback)

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug(f"{self.describe()}: {self._state.value} -> {state.value}")
            self._state = state

    def _connection_lost(self, exc: Optional[BaseException] = None) -> None:
        """Move to DISCONNECTED and notify listeners, once per connection."""
        if self._state == ConnectionState.DISCONNECTED:
            return
        self._set_state(ConnectionState.DISCONNECTED)
        if self._closed:
            return
        for callback in list(self._disconnect_callbacks):
            try:
                callback(exc)
            except Exception as e:
                logger.error(f"Disconnect callback failed for {self.describe()}: {e}", exc_info=True)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._set_state(ConnectionState.DISCONNECTED)
        try:
            await self._close()
        except Exception as e:
            logger.warning(f"Error closing {self.describe()}: {e}")

    @abstractmethod
    def describe(self) -> str:
        """Human readable target, used in log lines."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def publish(self, channel: str, payload: str) -> None:
        ...

    @abstractmethod
    async def subscribe(self, channel: str) -> AsyncIterator[Delivery]:
        ...

    @abstractmethod
    async def _close(self) -> None:
        """Release backend handles."""
