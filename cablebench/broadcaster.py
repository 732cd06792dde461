import asyncio
import logging
from typing import Optional, Set

from .errors import PublishError, TransportError
from .models.config import BroadcasterConfig
from .models.envelope import BenchmarkEnvelope
from .models.state import BroadcasterState, ConnectionState
from .transports.base import TransportAdapter

logger = logging.getLogger(__name__)


class Broadcaster:
    """
    Publishes a benchmark envelope on a fixed interval.

    Lifecycle:
        IDLE -> CONNECTING -> RUNNING -> (on disconnect) CONNECTING -> ...
        any state -> STOPPED (stop(), terminal)

    TIMERS:
    - one publish loop task while RUNNING, cancelled on disconnect
    - one delayed reconnect task while waiting to retry; retries use a
      fixed delay and continue until stop()

    BACKPRESSURE: none. A tick that finds the transport disconnected is
    dropped, never queued. Each publish runs as its own task so a slow
    backend never delays the next tick.
    """

    def __init__(self, transport: TransportAdapter, config: BroadcasterConfig, label: str = "Broadcaster"):
        self.transport = transport
        self.config = config
        self.label = label
        self.state = BroadcasterState.IDLE
        self.message_count = 0
        self.published = 0
        self.publish_errors = 0
        self.skipped_ticks = 0

        self._publish_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

        self.transport.on_disconnect(self._on_transport_disconnect)

    def log(self, message: str) -> None:
        level = logging.INFO if self.config.debug else logging.DEBUG
        logger.log(level, f"[{self.label}] {message}")

    @property
    def publishing(self) -> bool:
        return self._publish_task is not None and not self._publish_task.done()

    async def connect(self) -> bool:
        """
        Connect the transport and start the publish loop.

        Never raises on connection failure: a retry is scheduled instead.
        Returns True once RUNNING.
        """
        if self.state == BroadcasterState.STOPPED:
            return False

        self.state = BroadcasterState.CONNECTING
        self.log(f"Attempting to connect via {self.transport.describe()}")
        try:
            await self.transport.connect()
        except TransportError as e:
            logger.warning(f"[{self.label}] Connection setup error: {e}")
            self._schedule_reconnect()
            return False

        if self.state == BroadcasterState.STOPPED:
            # stop() ran while the handshake was in flight
            await self.transport.close()
            return False

        self.log(f"Connected to {self.transport.describe()}")
        self._start_publishing()
        self.state = BroadcasterState.RUNNING
        return True

    def _start_publishing(self) -> None:
        self._cancel_publishing()
        self._publish_task = asyncio.create_task(self._publish_loop(), name=f"publish:{self.label}")
        self.log(f"Broadcast interval started ({self.config.broadcast_interval_ms}ms)")

    def _cancel_publishing(self) -> None:
        task, self._publish_task = self._publish_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _publish_loop(self) -> None:
        interval = self.config.broadcast_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self.broadcast()

    def broadcast(self) -> Optional[asyncio.Task]:
        """
        Run one tick: bump the sequence and publish a fresh envelope.

        Returns the publish task, or None if the tick was skipped.
        """
        if self.transport.state != ConnectionState.CONNECTED:
            self.skipped_ticks += 1
            self.log("Not connected, skipping broadcast")
            return None

        self.message_count += 1
        envelope = BenchmarkEnvelope.create(self.message_count, self.config.payload_size)
        task = asyncio.create_task(self._publish(envelope))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _publish(self, envelope: BenchmarkEnvelope) -> None:
        try:
            await self.transport.publish(self.config.channel, envelope.serialize())
        except PublishError as e:
            self.publish_errors += 1
            logger.warning(f"[{self.label}] Error publishing message #{envelope.sequence}: {e}")
        except TransportError as e:
            self.publish_errors += 1
            logger.warning(f"[{self.label}] Connection lost while publishing #{envelope.sequence}: {e}")
            self._handle_disconnect()
        else:
            self.published += 1
            self.log(f"Broadcasting #{envelope.sequence} to {self.config.channel} at {envelope.timestamp}")

    def _on_transport_disconnect(self, exc: Optional[BaseException]) -> None:
        logger.warning(f"[{self.label}] Connection closed: {exc}")
        self._handle_disconnect()

    def _handle_disconnect(self) -> None:
        if self.state != BroadcasterState.RUNNING:
            return
        self._cancel_publishing()
        self.state = BroadcasterState.CONNECTING
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.state == BroadcasterState.STOPPED:
            return
        pending = self._reconnect_task
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            return
        delay = self.config.retry_delay_ms / 1000
        self.log(f"Reconnecting in {self.config.retry_delay_ms}ms")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay), name=f"reconnect:{self.label}")

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.connect()

    async def stop(self) -> None:
        """Cancel every timer and in-flight publish, then close the transport. Idempotent."""
        if self.state == BroadcasterState.STOPPED:
            return
        self.state = BroadcasterState.STOPPED

        tasks = [t for t in (self._publish_task, self._reconnect_task) if t is not None]
        tasks.extend(self._inflight)
        self._publish_task = None
        self._reconnect_task = None
        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.transport.close()
        self.log(f"Stopped after {self.message_count} broadcasts ({self.publish_errors} failed)")
