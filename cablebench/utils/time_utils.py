import time
from datetime import datetime, timezone


def get_current_timestamp() -> float:
    """Wall-clock time in seconds."""
    return time.time()


def iso_now() -> str:
    """Current UTC instant as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_epoch_ms(value) -> float:
    """
    Convert an envelope timestamp to epoch milliseconds.

    Accepts epoch milliseconds (int/float) or an ISO-8601 string.
    Raises ValueError for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp() * 1000
    raise ValueError(f"Invalid timestamp: {value!r}")
