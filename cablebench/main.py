"""
Process entry point.

    python -m cablebench broadcast <backend> [interval_ms]
    python -m cablebench subscribe <backend>
    python -m cablebench loopback [--port PORT]

`subscribe` reads N, LOG_SLOW and SKIP_SLOW from the environment.
Exit status is 0 after a clean shutdown, 1 if startup fails.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .broadcaster import Broadcaster
from .errors import InvalidArgument
from .harness import Harness
from .models.config import DEFAULT_HOST, BroadcasterConfig, HarnessConfig
from .transports.registry import BackendProfile, backend_names, get_backend

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cablebench", description="Pub/sub broadcast latency benchmarks")
    parser.add_argument("--log-level", default="INFO", help="Root log level (default: INFO)")
    commands = parser.add_subparsers(dest="command", required=True)

    broadcast = commands.add_parser("broadcast", help="Publish timestamped payloads on an interval")
    broadcast.add_argument("backend", choices=backend_names())
    broadcast.add_argument("interval", nargs="?", type=int, default=1000, help="Broadcast interval in ms")
    broadcast.add_argument("--host", default=DEFAULT_HOST)
    broadcast.add_argument("--port", type=int, help="Override the backend's broadcast port")
    broadcast.add_argument("--channel", default="all")
    broadcast.add_argument("--payload-size", type=int, default=500, help="Filler bytes per message")
    broadcast.add_argument("--secret", help="Broadcast auth secret (AnyCable) or connection token (Centrifugo)")
    broadcast.add_argument("--quiet", action="store_true", help="Log per-message activity at DEBUG only")

    subscribe = commands.add_parser("subscribe", help="Run N fast subscribers plus one slow subscriber")
    subscribe.add_argument("backend", choices=backend_names())
    subscribe.add_argument("--host", default=DEFAULT_HOST)
    subscribe.add_argument("--standard-port", type=int, help="Override the backend's standard port")
    subscribe.add_argument("--slow-port", type=int, help="Override the backend's degraded port")
    subscribe.add_argument("--channel", default="all")
    subscribe.add_argument("--reconnect-interval", type=int, default=5000, help="Reconnect delay in ms")
    subscribe.add_argument("--quiet", action="store_true", help="Log per-message activity at DEBUG only")

    loopback = commands.add_parser("loopback", help="Run the in-memory cable broker")
    loopback.add_argument("--host", default=DEFAULT_HOST)
    loopback.add_argument("--port", type=int, default=8080)

    return parser


def _secret_options(backend: BackendProfile, secret: Optional[str]) -> dict:
    if not secret:
        return {}
    if backend.name == "anycable":
        return {"secret": secret}
    if backend.name == "centrifugo":
        return {"token": secret}
    return {}


def build_broadcast_harness(args: argparse.Namespace) -> Harness:
    backend = get_backend(args.backend)
    config = BroadcasterConfig.create(
        host=args.host,
        port=args.port or backend.broadcast_port,
        broadcast_interval_ms=args.interval,
        channel=args.channel,
        payload_size=args.payload_size,
        debug=not args.quiet,
    )
    transport = backend.broadcaster_transport(config.host, config.port, **_secret_options(backend, args.secret))
    harness = Harness()
    harness.add_broadcaster(Broadcaster(transport, config, label=backend.label))
    logger.info(f"Starting {backend.label}, broadcast rate: {config.broadcast_interval_ms}ms")
    return harness


def build_subscribe_harness(args: argparse.Namespace) -> Harness:
    backend = get_backend(args.backend)
    config = HarnessConfig.from_env(
        host=args.host,
        standard_port=args.standard_port or backend.standard_port,
        slow_port=args.slow_port or backend.slow_port,
        channel=args.channel,
        reconnect_interval_ms=args.reconnect_interval,
        debug=not args.quiet,
    )

    def transport_factory(host: str, port: int, slow: bool):
        return backend.subscriber_transport(host, port)

    logger.info(
        f"Starting {config.subscriber_count} subscriber(s) on port {config.standard_port}"
        + ("" if config.skip_slow else f" and a slow subscriber on port {config.slow_port}")
    )
    return Harness.from_config(config, transport_factory)


async def _run(harness: Harness) -> int:
    harness.install_signal_handlers()
    return await harness.run()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "loopback":
        from .loopback.server import run
        run(host=args.host, port=args.port, log_level=args.log_level.lower())
        return 0

    try:
        if args.command == "broadcast":
            harness = build_broadcast_harness(args)
        else:
            harness = build_subscribe_harness(args)
    except (InvalidArgument, ValueError) as e:
        logger.error(f"Startup failed: {e}")
        return 1

    try:
        return asyncio.run(_run(harness))
    except Exception as e:
        logger.error(f"Error in main process: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
