import asyncio
import logging
import signal
from typing import Callable, List, Optional, Union

from .broadcaster import Broadcaster
from .models.config import HarnessConfig
from .stall import StallTracker
from .subscriber import Subscriber
from .transports.base import TransportAdapter

logger = logging.getLogger(__name__)

# (host, port, slow) -> transport
SubscriberTransportFactory = Callable[[str, int, bool], TransportAdapter]

Component = Union[Broadcaster, Subscriber]


class Harness:
    """
    Owns every broadcaster and subscriber of one benchmark process.

    The process stays up until request_shutdown() is called (normally by
    SIGINT/SIGTERM). Shutdown then stops every component concurrently,
    bounded by a grace period; failures while closing are logged, not
    raised.
    """

    def __init__(self, grace_seconds: float = 2.0, tracker: Optional[StallTracker] = None):
        self.grace_seconds = grace_seconds
        self.tracker = tracker or StallTracker()
        self.broadcasters: List[Broadcaster] = []
        self.subscribers: List[Subscriber] = []
        self._shutdown_event: Optional[asyncio.Event] = None
        self._stopped = False

    @classmethod
    def from_config(
        cls,
        config: HarnessConfig,
        transport_factory: SubscriberTransportFactory,
        tracker: Optional[StallTracker] = None,
    ) -> "Harness":
        """
        Build the subscriber fleet: N fast subscribers on the standard
        port plus one slow subscriber on the degraded port (unless
        skip_slow). All of them share one StallTracker.
        """
        harness = cls(
            grace_seconds=config.shutdown_grace_seconds,
            tracker=tracker or StallTracker(always_log_slow=config.log_slow),
        )
        for i in range(config.subscriber_count):
            harness.add_subscriber(Subscriber(
                transport_factory(config.host, config.standard_port, False),
                config.subscriber_config(name=f"Subscriber: {i}"),
                harness.tracker,
            ))

        if not config.skip_slow:
            harness.add_subscriber(Subscriber(
                transport_factory(config.host, config.slow_port, True),
                config.subscriber_config(slow=True, name="Slow subscriber"),
                harness.tracker,
            ))
        return harness

    @property
    def components(self) -> List[Component]:
        return [*self.broadcasters, *self.subscribers]

    def add_broadcaster(self, broadcaster: Broadcaster) -> None:
        self.broadcasters.append(broadcaster)

    def add_subscriber(self, subscriber: Subscriber) -> None:
        self.subscribers.append(subscriber)

    def _event(self) -> asyncio.Event:
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        return self._shutdown_event

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._event().set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to request_shutdown()."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self.request_shutdown)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                signal.signal(signum, lambda *_: loop.call_soon_threadsafe(self.request_shutdown))

    async def start(self) -> None:
        for broadcaster in self.broadcasters:
            await broadcaster.connect()
        for subscriber in self.subscribers:
            subscriber.start()
        logger.info(
            f"All components are set up and running "
            f"({len(self.broadcasters)} broadcaster(s), {len(self.subscribers)} subscriber(s))"
        )

    async def run(self) -> int:
        """Start everything, wait for shutdown, clean up. Returns the exit status."""
        self._event()
        await self.start()
        await self._event().wait()
        await self.shutdown()
        return 0

    async def shutdown(self) -> None:
        """Stop every component. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down...")

        components = self.components
        try:
            results = await asyncio.wait_for(
                asyncio.gather(*(c.stop() for c in components), return_exceptions=True),
                timeout=self.grace_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Shutdown did not complete within {self.grace_seconds}s")
        else:
            for component, result in zip(components, results):
                if isinstance(result, Exception):
                    logger.error(f"Error stopping {component!r}: {result}")

        self.log_summary()
        logger.info("Shutdown complete")

    def log_summary(self) -> None:
        for broadcaster in self.broadcasters:
            logger.info(
                f"[{broadcaster.label}] broadcasts: {broadcaster.message_count}, "
                f"published: {broadcaster.published}, failed: {broadcaster.publish_errors}, "
                f"skipped ticks: {broadcaster.skipped_ticks}"
            )
        for subscriber in self.subscribers:
            stats = subscriber.stats.get_stats()
            logger.info(
                f"[{subscriber.config.tag}] received: {stats['received']}, gaps: {stats['gaps']}, "
                f"out of order: {stats['out_of_order']}, reconnects: {stats['reconnects']}, "
                f"latency avg/p95/p99: {stats['latency_avg_ms']:.1f}/"
                f"{stats['latency_p95_ms']:.1f}/{stats['latency_p99_ms']:.1f}ms"
            )
        if self.subscribers:
            logger.info(f"Stalls detected: {self.tracker.stall_count}")
