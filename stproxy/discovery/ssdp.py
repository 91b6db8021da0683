"""
SSDP advertisement session (UPnP discovery over UDP multicast).

An Advertiser owns one multicast endpoint on 239.255.255.250:1900. It sends
NOTIFY ssdp:alive / ssdp:byebye announcements and answers M-SEARCH requests
for its service type.
"""

import asyncio
import logging
import socket
import struct

logger = logging.getLogger("stproxy.ssdp")

MULTICAST_ADDR = "239.255.255.250"
SSDP_PORT = 1900
MULTICAST_TTL = 2

NTS_ALIVE = "ssdp:alive"
NTS_BYEBYE = "ssdp:byebye"
ST_ALL = "ssdp:all"


def _render(start_line: str, headers: list[tuple[str, str]]) -> bytes:
    lines = [start_line] + [f"{name}: {value}" for name, value in headers]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def build_alive(st: str, usn: str, location: str, server: str, max_age: int) -> bytes:
    """Render a NOTIFY ssdp:alive message."""
    headers = [
        ("HOST", f"{MULTICAST_ADDR}:{SSDP_PORT}"),
        ("NT", st),
        ("NTS", NTS_ALIVE),
        ("USN", usn),
        ("LOCATION", location),
    ]
    if server:
        headers.append(("SERVER", server))
    headers.append(("CACHE-CONTROL", f"max-age={max_age}"))
    return _render("NOTIFY * HTTP/1.1", headers)


def build_byebye(st: str, usn: str) -> bytes:
    """Render a NOTIFY ssdp:byebye message."""
    headers = [
        ("HOST", f"{MULTICAST_ADDR}:{SSDP_PORT}"),
        ("NT", st),
        ("NTS", NTS_BYEBYE),
        ("USN", usn),
    ]
    return _render("NOTIFY * HTTP/1.1", headers)


def build_search_response(st: str, usn: str, location: str, server: str, max_age: int) -> bytes:
    """Render the unicast 200 OK answer to an M-SEARCH."""
    headers = [
        ("CACHE-CONTROL", f"max-age={max_age}"),
        ("EXT", ""),
        ("LOCATION", location),
        ("SERVER", server),
        ("ST", st),
        ("USN", usn),
    ]
    return _render("HTTP/1.1 200 OK", headers)


def parse_message(data: bytes) -> tuple[str, dict[str, str]] | None:
    """
    Parse an SSDP datagram into (start line, headers).

    Header names are upper-cased. Returns None for undecodable input.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    lines = text.split("\r\n")
    if not lines or not lines[0].strip():
        return None
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            break
        name, sep, value = line.partition(":")
        if not sep:
            continue
        headers[name.strip().upper()] = value.strip()
    return (lines[0].strip(), headers)


class SSDPProtocol(asyncio.DatagramProtocol):
    """Datagram protocol feeding inbound M-SEARCH requests to an Advertiser."""

    def __init__(self, advertiser: "Advertiser"):
        self.advertiser = advertiser

    def connection_made(self, transport):
        self.advertiser.transport = transport

    def datagram_received(self, data: bytes, addr):
        parsed = parse_message(data)
        if parsed is None:
            return
        start_line, headers = parsed
        if start_line.upper().startswith("M-SEARCH"):
            self.advertiser.handle_search(headers, addr)

    def error_received(self, exc):
        logger.warning("SSDP socket error: %s", exc)

    def connection_lost(self, exc):
        if exc is not None:
            logger.warning("SSDP socket closed with error: %s", exc)


class Advertiser:
    """
    One SSDP advertisement: service type, unique service name and location.

    Create with ``advertise()``; call ``alive()`` periodically and
    ``bye()`` then ``close()`` on shutdown.
    """

    def __init__(self, st: str, usn: str, location: str, server: str = "", max_age: int = 1800):
        self.st = st
        self.usn = usn
        self.location = location
        self.server = server
        self.max_age = max_age
        self.transport: asyncio.DatagramTransport | None = None
        self.destination = (MULTICAST_ADDR, SSDP_PORT)
        self._bye_sent = False

    @property
    def closed(self) -> bool:
        return self.transport is None or self.transport.is_closing()

    def _send(self, message: bytes, addr) -> None:
        if self.closed:
            raise ConnectionError("SSDP advertisement session is closed")
        self.transport.sendto(message, addr)

    def alive(self) -> None:
        """Multicast a NOTIFY ssdp:alive."""
        self._send(build_alive(self.st, self.usn, self.location, self.server, self.max_age), self.destination)
        logger.debug("sent alive notify: st=%s usn=%s", self.st, self.usn)

    def bye(self) -> None:
        """Multicast a NOTIFY ssdp:byebye. Only the first call sends."""
        if self._bye_sent:
            return
        self._send(build_byebye(self.st, self.usn), self.destination)
        self._bye_sent = True
        logger.debug("sent bye notify: st=%s usn=%s", self.st, self.usn)

    def close(self) -> None:
        """Release the multicast socket."""
        if self.transport is not None and not self.transport.is_closing():
            self.transport.close()

    def handle_search(self, headers: dict[str, str], addr) -> None:
        """Answer an M-SEARCH if it asks for our service type or for everything."""
        if headers.get("MAN", "").strip('"') != "ssdp:discover":
            return
        st = headers.get("ST", "")
        if st not in (self.st, ST_ALL):
            logger.debug("ignored M-SEARCH from %s for st=%s", addr, st)
            return
        if self.closed:
            return
        message = build_search_response(self.st, self.usn, self.location, self.server, self.max_age)
        self.transport.sendto(message, addr)
        logger.debug("answered M-SEARCH from %s for st=%s", addr, st)


def create_multicast_socket(interface: str = "0.0.0.0", port: int = SSDP_PORT) -> socket.socket:
    """
    Open a UDP socket joined to the SSDP multicast group.

    Raises:
        OSError: if the socket cannot be bound or cannot join the group
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                logger.debug("SO_REUSEPORT not supported")
        sock.bind(("", port))
        mreq = struct.pack("4s4s", socket.inet_aton(MULTICAST_ADDR), socket.inet_aton(interface))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
        if interface != "0.0.0.0":
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(interface))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


async def advertise(
    st: str,
    usn: str,
    location: str,
    server: str = "",
    max_age: int = 1800,
    interface: str = "0.0.0.0",
) -> Advertiser:
    """
    Open an SSDP advertisement session and send the initial alive notice.

    Raises:
        OSError: if the multicast endpoint cannot be opened
    """
    advertiser = Advertiser(st, usn, location, server, max_age)
    sock = create_multicast_socket(interface)
    loop = asyncio.get_running_loop()
    try:
        await loop.create_datagram_endpoint(lambda: SSDPProtocol(advertiser), sock=sock)
    except OSError:
        sock.close()
        raise
    logger.info("SSDP advertising %s as %s at %s", st, usn, location)
    advertiser.alive()
    return advertiser


def local_ip() -> str:
    """Best guess at the LAN address other devices can reach us on."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            # No packet is sent; connect() only selects the outbound interface
            s.connect((MULTICAST_ADDR, SSDP_PORT))
            addr = s.getsockname()[0]
        except OSError:
            return "127.0.0.1"
    if addr == "0.0.0.0":
        return "127.0.0.1"
    return addr
