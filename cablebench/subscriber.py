import asyncio
import logging
from contextlib import aclosing
from typing import Dict, Optional

from .errors import ProtocolError, TransportError
from .models.config import SubscriberConfig
from .models.envelope import BenchmarkEnvelope
from .models.state import SubscriberState
from .stall import StallTracker
from .transports.base import Delivery, TransportAdapter
from .utils.latency import LatencyWindow

logger = logging.getLogger(__name__)

LATENCY_WINDOW = 1000


class SubscriberStats:
    """Per-subscriber counters collected while the benchmark runs."""

    def __init__(self, latency_window: int = LATENCY_WINDOW):
        self.received = 0
        self.last_sequence: Optional[int] = None
        self.gaps = 0
        self.out_of_order = 0
        self.protocol_errors = 0
        self.reconnects = 0
        self.slow_observations = 0
        self.latencies = LatencyWindow(latency_window)

    def record(self, envelope: BenchmarkEnvelope, latency_ms: float) -> bool:
        """
        Record one envelope. Returns False if it arrived out of order.

        Gaps (dropped messages) are counted, never fatal.
        """
        self.received += 1
        self.latencies.add(latency_ms)

        in_order = True
        if self.last_sequence is not None:
            if envelope.sequence < self.last_sequence:
                self.out_of_order += 1
                in_order = False
            elif envelope.sequence > self.last_sequence + 1:
                self.gaps += envelope.sequence - self.last_sequence - 1

        if self.last_sequence is None or envelope.sequence > self.last_sequence:
            self.last_sequence = envelope.sequence
        return in_order

    def get_stats(self) -> Dict:
        stats = {
            "received": self.received,
            "last_sequence": self.last_sequence,
            "gaps": self.gaps,
            "out_of_order": self.out_of_order,
            "protocol_errors": self.protocol_errors,
            "reconnects": self.reconnects,
        }
        for name, value in self.latencies.summary().items():
            stats[f"latency_{name}_ms"] = value
        return stats


class Subscriber:
    """
    Receives the benchmark stream on one connection and measures it.

    Lifecycle:
        IDLE -> CONNECTING -> SUBSCRIBED -> (on close) CONNECTING -> ...
        any state -> STOPPED (stop(), terminal)

    Reconnects use a fixed delay (`reconnect_interval_ms`) and retry
    until stopped, unless `auto_reconnect` is off, in which case a
    closed connection leaves the subscriber IDLE.
    """

    def __init__(self, transport: TransportAdapter, config: SubscriberConfig, tracker: StallTracker):
        self.transport = transport
        self.config = config
        self.tracker = tracker
        self.state = SubscriberState.IDLE
        self.stats = SubscriberStats()
        self._task: Optional[asyncio.Task] = None

    @property
    def slow(self) -> bool:
        return self.config.slow

    @property
    def messages_received(self) -> int:
        return self.stats.received

    def log(self, message: str) -> None:
        level = logging.INFO if self.config.debug else logging.DEBUG
        logger.log(level, f"[{self.config.tag}] {message}")

    def start(self) -> asyncio.Task:
        """Start the receive loop in the background."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name=f"subscriber:{self.config.tag}")
        return self._task

    async def connect(self):
        """Open the transport and subscribe. Returns the delivery stream."""
        self.state = SubscriberState.CONNECTING
        await self.transport.connect()
        self.log(f"Connected to {self.transport.describe()}")
        stream = await self.transport.subscribe(self.config.channel)
        self.state = SubscriberState.SUBSCRIBED
        self.log(f"Subscribed to {self.config.channel}")
        return stream

    async def _run(self) -> None:
        delay = self.config.reconnect_interval_ms / 1000
        while self.state != SubscriberState.STOPPED:
            try:
                stream = await self.connect()
                async with aclosing(stream):
                    async for delivery in stream:
                        self.handle_delivery(delivery)
                self.log("Stream ended")
            except TransportError as e:
                self.log(f"Connection closed: {e}")
            except Exception as e:
                logger.error(f"[{self.config.tag}] Receive loop failed: {e}", exc_info=True)

            if self.state == SubscriberState.STOPPED:
                break
            if not self.config.auto_reconnect:
                self.state = SubscriberState.IDLE
                break

            self.state = SubscriberState.CONNECTING
            self.stats.reconnects += 1
            self.log(f"Reconnecting in {self.config.reconnect_interval_ms}ms")
            await asyncio.sleep(delay)

    def handle_delivery(self, delivery: Delivery) -> None:
        """
        Process one application payload.

        Runs synchronously so the stall check and the shared-state update
        happen in the same event loop turn.
        """
        try:
            envelope = BenchmarkEnvelope.parse(delivery.payload)
        except ProtocolError as e:
            self.stats.protocol_errors += 1
            logger.warning(f"[{self.config.tag}] Encountered issue on message rx: {e}")
            return

        now_ms = delivery.received_at * 1000
        if not self.stats.record(envelope, now_ms - envelope.timestamp_ms):
            logger.warning(
                f"[{self.config.tag}] Broadcast #{envelope.sequence} arrived after "
                f"#{self.stats.last_sequence}"
            )

        received = self.stats.received
        if not self.slow:
            observation = self.tracker.record_fast_arrival(now_ms, received)
            if observation is not None:
                logger.warning(
                    f"[{self.config.tag}] Got stuck before receiving broadcast "
                    f"#{observation.received_count}, delay: {observation.delay_ms:.0f}ms"
                )
        elif self.tracker.record_slow_arrival():
            self.stats.slow_observations += 1
            logger.info(f"[{self.config.tag}] Received message {received}: {envelope.sequence}")

    async def stop(self) -> None:
        """Cancel the receive loop and close the transport. Idempotent."""
        if self.state == SubscriberState.STOPPED:
            return
        self.state = SubscriberState.STOPPED

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"[{self.config.tag}] Receive loop failed: {e}")

        await self.transport.close()
        self.log("Stopped")
