import statistics
from collections import deque
from typing import Deque, Dict, Iterable


def percentile(sorted_values: list, fraction: float) -> float:
    """Nearest-rank percentile of an already sorted, non-empty list."""
    index = min(int(len(sorted_values) * fraction), len(sorted_values) - 1)
    return sorted_values[index]


class LatencyWindow:
    """Keeps the most recent `capacity` latency samples (milliseconds)."""

    def __init__(self, capacity: int = 1000, samples: Iterable[float] = ()):
        if capacity <= 0:
            raise ValueError("Capacity must be positive")
        self._samples: Deque[float] = deque(samples, maxlen=capacity)

    def add(self, latency_ms: float) -> None:
        self._samples.append(latency_ms)

    def __len__(self) -> int:
        return len(self._samples)

    def summary(self) -> Dict[str, float]:
        if not self._samples:
            return {"avg": 0, "p50": 0, "p95": 0, "p99": 0, "max": 0}

        ordered = sorted(self._samples)
        return {
            "avg": statistics.mean(ordered),
            "p50": percentile(ordered, 0.50),
            "p95": percentile(ordered, 0.95),
            "p99": percentile(ordered, 0.99),
            "max": ordered[-1],
        }
