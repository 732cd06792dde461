from .hub import CableConnection, StreamHub
from .handler import CableHandler
from .server import create_app

__all__ = ["CableConnection", "StreamHub", "CableHandler", "create_app"]
