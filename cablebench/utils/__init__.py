from .time_utils import get_current_timestamp, iso_now, to_epoch_ms
from .latency import LatencyWindow, percentile
from .validation import require_channel_name, validate_channel_name
from .payload import generate_random_bytes

__all__ = [
    "get_current_timestamp",
    "iso_now",
    "to_epoch_ms",
    "LatencyWindow",
    "percentile",
    "require_channel_name",
    "validate_channel_name",
    "generate_random_bytes",
]
