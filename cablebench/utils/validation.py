import re

from ..errors import InvalidArgument

MAX_CHANNEL_LENGTH = 255

# Cable identifiers use "$pubsub", so "$" is allowed alongside the usual set
CHANNEL_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_\-\.\$]+$')


def validate_channel_name(name: str) -> bool:
    if not isinstance(name, str) or not name or len(name) > MAX_CHANNEL_LENGTH:
        return False
    return CHANNEL_NAME_PATTERN.match(name) is not None


def require_channel_name(name: str) -> str:
    """Return `name` unchanged, or raise InvalidArgument if it is not a usable channel."""
    if not validate_channel_name(name):
        raise InvalidArgument(f"Invalid channel name: {name!r}")
    return name
