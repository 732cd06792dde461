"""
Tests for harness configuration, fleet construction and shutdown.
"""
import asyncio

import pytest

from cablebench.broadcaster import Broadcaster
from cablebench.errors import InvalidArgument
from cablebench.harness import Harness
from cablebench.models.config import BroadcasterConfig, HarnessConfig
from cablebench.models.state import BroadcasterState, SubscriberState

from helpers import FakeTransport, wait_until


class RecordingFactory:
    def __init__(self):
        self.calls = []
        self.transports = []

    def __call__(self, host, port, slow):
        self.calls.append((host, port, slow))
        transport = FakeTransport()
        self.transports.append(transport)
        return transport


def test_from_env_defaults():
    config = HarnessConfig.from_env({}, standard_port=8080, slow_port=8081)

    assert config.subscriber_count == 10
    assert config.log_slow is False
    assert config.skip_slow is False


def test_from_env_overrides():
    env = {"N": "3", "LOG_SLOW": "true", "SKIP_SLOW": "yes"}
    config = HarnessConfig.from_env(env, standard_port=8080, slow_port=8081)

    assert config.subscriber_count == 3
    assert config.log_slow is True
    # only the literal "true" enables a flag
    assert config.skip_slow is False


@pytest.mark.parametrize("env", [{"N": "many"}, {"N": "-1"}])
def test_from_env_rejects_bad_counts(env):
    with pytest.raises(InvalidArgument):
        HarnessConfig.from_env(env, standard_port=8080, slow_port=8081)


def test_invalid_channel_rejected():
    with pytest.raises(InvalidArgument):
        HarnessConfig.create(standard_port=8080, slow_port=8081, channel="no spaces")


def test_fleet_has_n_fast_and_one_slow_subscriber():
    factory = RecordingFactory()
    config = HarnessConfig.create(subscriber_count=3, standard_port=8080, slow_port=8081, log_slow=True)

    harness = Harness.from_config(config, factory)

    assert factory.calls == [
        ("127.0.0.1", 8080, False),
        ("127.0.0.1", 8080, False),
        ("127.0.0.1", 8080, False),
        ("127.0.0.1", 8081, True),
    ]
    assert [s.slow for s in harness.subscribers] == [False, False, False, True]
    assert all(s.tracker is harness.tracker for s in harness.subscribers)
    assert harness.tracker.always_log_slow is True
    assert harness.subscribers[-1].config.tag == "Slow subscriber"


def test_skip_slow_omits_slow_subscriber():
    factory = RecordingFactory()
    config = HarnessConfig.create(subscriber_count=2, standard_port=8080, slow_port=8081, skip_slow=True)

    harness = Harness.from_config(config, factory)

    assert len(harness.subscribers) == 2
    assert not any(s.slow for s in harness.subscribers)


@pytest.mark.asyncio
async def test_shutdown_stops_everything():
    factory = RecordingFactory()
    config = HarnessConfig.create(
        subscriber_count=2, skip_slow=True, standard_port=8080, slow_port=8081, reconnect_interval_ms=10,
    )
    harness = Harness.from_config(config, factory)
    broadcast_transport = FakeTransport()
    broadcaster = Broadcaster(
        broadcast_transport,
        BroadcasterConfig.create(port=9999, broadcast_interval_ms=10, retry_delay_ms=10),
    )
    harness.add_broadcaster(broadcaster)

    run = asyncio.create_task(harness.run())
    await wait_until(lambda: all(s.state == SubscriberState.SUBSCRIBED for s in harness.subscribers))
    assert broadcaster.state == BroadcasterState.RUNNING

    harness.request_shutdown()
    status = await asyncio.wait_for(run, timeout=2.0)

    assert status == 0
    assert broadcaster.state == BroadcasterState.STOPPED
    assert not broadcaster.publishing
    assert all(s.state == SubscriberState.STOPPED for s in harness.subscribers)
    assert all(t.closed for t in [broadcast_transport, *factory.transports])

    published = len(broadcast_transport.published)
    await asyncio.sleep(0.05)
    assert len(broadcast_transport.published) == published


@pytest.mark.asyncio
async def test_shutdown_is_idempotent():
    harness = Harness()
    transport = FakeTransport()
    harness.add_broadcaster(Broadcaster(transport, BroadcasterConfig.create(port=9999)))
    await harness.start()

    await harness.shutdown()
    await harness.shutdown()

    assert transport.close_calls == 1
