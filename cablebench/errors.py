"""
Error taxonomy for the benchmark harness.

Every error is handled inside the component that detects it:
- InvalidArgument fails fast at construction or call time
- TransportError is recovered by the reconnect state machine
- PublishError skips a single tick
- ProtocolError discards a single inbound frame
"""


class BenchError(Exception):
    """Base class for all harness errors."""


class InvalidArgument(BenchError, ValueError):
    """Malformed configuration or call argument."""


class TransportError(BenchError, ConnectionError):
    """Connection refused, reset, or closed by the backend."""


class PublishError(BenchError):
    """A single publish attempt failed while the connection stayed up."""


class ProtocolError(BenchError):
    """An inbound frame could not be parsed."""
