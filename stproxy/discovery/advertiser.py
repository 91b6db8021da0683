"""
Discovery advertiser lifecycle: Idle -> Advertising -> Draining -> Stopped.

Keeps the proxy's SSDP announcement fresh on client devices (which expire it
after max-age seconds) and withdraws it on shutdown.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from stproxy.discovery import ssdp

logger = logging.getLogger("stproxy.ssdp")

DEFAULT_ST = "urn:SmartThingsCommunity:device:GenericProxy:1"
DEFAULT_USN = "uuid:de8a5619-2603-40d1-9e21-1967952d7f86"
DEFAULT_MAX_AGE = 1800
DEFAULT_ALIVE_INTERVAL = 10


class DiscoveryError(Exception):
    """Raised when the advertisement session cannot be opened."""


class DiscoveryState(enum.Enum):
    IDLE = "idle"
    ADVERTISING = "advertising"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DiscoverySettings:
    """Parameters of the SSDP advertisement.

    A location of None is filled in from the proxy's bound port at startup.
    """

    location: str | None = None
    st: str = DEFAULT_ST
    usn: str = DEFAULT_USN
    server: str = ""
    max_age: int = DEFAULT_MAX_AGE
    alive_interval: float = DEFAULT_ALIVE_INTERVAL


def location_for_port(port: str | int, host: str | None = None) -> str:
    """Build the LOCATION URL advertised for a proxy listening on ``port``."""
    return f"http://{host or ssdp.local_ip()}:{port}/"


Opener = Callable[..., Awaitable[ssdp.Advertiser]]


class DiscoveryLifecycle:
    """
    Owns one SSDP advertisement session for the life of the process.

    Args:
        settings: Advertisement parameters
        opener: Coroutine function opening the session (defaults to ssdp.advertise)
    """

    def __init__(self, settings: DiscoverySettings, opener: Opener = ssdp.advertise):
        self.settings = settings
        self._opener = opener
        self.advertiser: ssdp.Advertiser | None = None
        self.state = DiscoveryState.IDLE
        self.heartbeats = 0

        if 0 < settings.max_age <= settings.alive_interval:
            logger.warning(
                "Alive interval %ss is not shorter than max-age %ss; clients may expire the announcement",
                settings.alive_interval,
                settings.max_age,
            )

    async def start(self) -> None:
        """
        Open the advertisement session (Idle -> Advertising).

        Raises:
            DiscoveryError: if the session cannot be opened
        """
        if self.state is not DiscoveryState.IDLE:
            raise RuntimeError(f"cannot start discovery in state {self.state.value}")
        s = self.settings
        try:
            self.advertiser = await self._opener(s.st, s.usn, s.location, s.server, s.max_age)
        except OSError as exc:
            self.state = DiscoveryState.STOPPED
            raise DiscoveryError(f"Failed to open SSDP advertisement: {exc}") from exc
        self.state = DiscoveryState.ADVERTISING

    def heartbeat(self) -> None:
        """Send one alive notice; failures are logged and the loop carries on."""
        try:
            self.advertiser.alive()
            self.heartbeats += 1
        except OSError as exc:
            logger.warning("SSDP alive notify failed: %s", exc)

    async def run(self, shutdown: asyncio.Event) -> None:
        """
        Heartbeat until ``shutdown`` is set, then drain.

        A non-positive alive interval disables periodic re-announcement.
        """
        if self.state is DiscoveryState.IDLE:
            await self.start()

        interval = self.settings.alive_interval
        try:
            while not shutdown.is_set():
                if interval <= 0:
                    await shutdown.wait()
                    break
                try:
                    await asyncio.wait_for(shutdown.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    self.heartbeat()
        finally:
            self.drain()

    def drain(self) -> None:
        """Send bye and release the session (best effort, runs once)."""
        if self.state is not DiscoveryState.ADVERTISING:
            return
        self.state = DiscoveryState.DRAINING
        try:
            self.advertiser.bye()
        except OSError as exc:
            logger.warning("SSDP bye notify failed: %s", exc)
        try:
            self.advertiser.close()
        except OSError as exc:
            logger.warning("SSDP session close failed: %s", exc)
        self.state = DiscoveryState.STOPPED
        logger.info("SSDP advertisement withdrawn")
