import random

from ..errors import InvalidArgument


def generate_random_bytes(size: int) -> str:
    """
    Generate `size` pseudo-random bytes encoded as a lowercase hex string.

    Benchmark filler only: not cryptographically secure.
    """
    # bool is an int subclass but never a valid size
    if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
        raise InvalidArgument(f"Number of bytes must be a positive integer, got {size!r}")

    return random.randbytes(size).hex()
