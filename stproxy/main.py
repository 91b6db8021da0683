"""Main entry point for the stproxy command"""

import argparse
import asyncio
import dataclasses
import logging
import sys

from . import __version__
from .config import ConfigError, Configuration, load_config
from .discovery.advertiser import (
    DEFAULT_ALIVE_INTERVAL,
    DEFAULT_MAX_AGE,
    DEFAULT_ST,
    DEFAULT_USN,
    DiscoveryError,
    DiscoveryLifecycle,
    DiscoverySettings,
    location_for_port,
)
from .output import print_error, print_startup
from .router.core import create_app
from .server import ListenerError, ProxyServer
from .shutdown import ShutdownCoordinator
from .structured_logging import setup_logging

logger = logging.getLogger("stproxy")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stproxy",
        description="Path-prefix reverse proxy with SSDP discovery",
        epilog="Requests to /<prefix>/<rest> are forwarded to the target configured for <prefix>.",
    )
    parser.add_argument("--version", action="version", version=f"stproxy {__version__}")
    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to the JSON configuration file (default: $STPROXY_CONFIG or config.json)",
    )
    parser.add_argument("--st", default=DEFAULT_ST, help="ST: SSDP service type")
    parser.add_argument("--usn", default=DEFAULT_USN, help="USN: unique service name")
    parser.add_argument("--loc", default=None, help="LOCATION header (default: http://<lan-ip>:<port>/)")
    parser.add_argument("--srv", default="", help="SERVER header")
    parser.add_argument("--maxage", type=int, default=DEFAULT_MAX_AGE, help="CACHE-CONTROL max-age in seconds")
    parser.add_argument(
        "--ai",
        type=int,
        default=DEFAULT_ALIVE_INTERVAL,
        help="Alive interval in seconds (0 disables periodic announcements)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every SSDP message")
    return parser


def discovery_settings(args: argparse.Namespace, config: Configuration) -> DiscoverySettings:
    """Advertisement settings; with an ephemeral port the location waits for bind()."""
    location = args.loc
    if not location and config.port_number != 0:
        location = location_for_port(config.port)
    return DiscoverySettings(
        location=location,
        st=args.st,
        usn=args.usn,
        server=args.srv,
        max_age=args.maxage,
        alive_interval=args.ai,
    )


async def serve(
    config: Configuration,
    settings: DiscoverySettings,
    coordinator: ShutdownCoordinator | None = None,
    discovery: DiscoveryLifecycle | None = None,
) -> None:
    """
    Run the proxy and the SSDP advertiser until a shutdown signal arrives.

    Raises:
        ListenerError: if the HTTP port cannot be bound or served
        DiscoveryError: if the SSDP session cannot be opened
    """
    coordinator = coordinator or ShutdownCoordinator()
    app = create_app(config)
    server = ProxyServer(app, config.port_number)

    try:
        server.bind()
        if settings.location is None:
            settings = dataclasses.replace(settings, location=location_for_port(server.bound_port))
        discovery = discovery or DiscoveryLifecycle(settings)
        await discovery.start()
    except (ListenerError, DiscoveryError):
        server.close()
        # uvicorn never ran, so the lifespan hook will not close the client
        await app.state.http_client.aclose()
        raise

    coordinator.install_signal_handlers()
    logger.info("Server initialized on port %s", server.bound_port)
    try:
        await coordinator.run(server.serve(coordinator.event), discovery.run(coordinator.event))
    finally:
        coordinator.remove_signal_handlers()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print_error(str(e))
        return 1

    settings = discovery_settings(args, config)
    print_startup(
        config.hosts,
        config.port,
        settings.st,
        settings.usn,
        settings.location,
        settings.max_age,
        settings.alive_interval,
    )

    try:
        asyncio.run(serve(config, settings))
    except (ListenerError, DiscoveryError) as e:
        print_error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
