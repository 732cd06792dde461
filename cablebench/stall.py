from dataclasses import dataclass
from typing import Optional

DEFAULT_STALL_THRESHOLD_MS = 100.0


@dataclass(frozen=True)
class StallObservation:
    received_count: int
    delay_ms: float


class StallTracker:
    """
    Delivery-stall state shared by the whole fast cohort.

    One instance is injected into every subscriber of a harness. Fast
    subscribers feed it their arrival instants; the slow subscriber only
    reads and clears the `stalled` flag.

    CONCURRENCY: methods are synchronous, so each check-and-update runs
    within a single event loop turn and needs no lock.
    """

    def __init__(self, threshold_ms: float = DEFAULT_STALL_THRESHOLD_MS, always_log_slow: bool = False):
        self.threshold_ms = threshold_ms
        self.always_log_slow = always_log_slow
        self.last_arrival_ms = 0.0
        self.stalled = False
        self.stall_count = 0
        self.last_observation: Optional[StallObservation] = None

    def record_fast_arrival(self, now_ms: float, received_count: int) -> Optional[StallObservation]:
        """
        Register an arrival on a fast subscriber.

        Returns a StallObservation when the gap since the previous fast
        arrival (on any fast subscriber) exceeds the threshold.
        """
        observation = None
        if self.last_arrival_ms > 0 and now_ms - self.last_arrival_ms > self.threshold_ms:
            observation = StallObservation(received_count=received_count, delay_ms=now_ms - self.last_arrival_ms)
            self.stalled = True
            self.stall_count += 1
            self.last_observation = observation

        self.last_arrival_ms = now_ms
        return observation

    def record_slow_arrival(self) -> bool:
        """Return True if the slow subscriber should report this arrival."""
        if self.stalled or self.always_log_slow:
            self.stalled = False
            return True
        return False
