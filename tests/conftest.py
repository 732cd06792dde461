import pytest
import pytest_asyncio

from cablebench.models.config import BroadcasterConfig, SubscriberConfig
from cablebench.stall import StallTracker

from helpers import FakeTransport


@pytest.fixture
def tracker():
    return StallTracker()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def broadcaster_config():
    return BroadcasterConfig.create(port=9999, broadcast_interval_ms=10, retry_delay_ms=20, payload_size=16)


@pytest.fixture
def subscriber_config():
    return SubscriberConfig.create(port=9999, reconnect_interval_ms=10)


@pytest.fixture
def slow_subscriber_config():
    return SubscriberConfig.create(port=9998, reconnect_interval_ms=10, slow=True)


@pytest_asyncio.fixture
async def running_broadcaster(transport, broadcaster_config):
    """A connected broadcaster, stopped after the test."""
    from cablebench.broadcaster import Broadcaster

    broadcaster = Broadcaster(transport, broadcaster_config)
    await broadcaster.connect()
    yield broadcaster
    await broadcaster.stop()
