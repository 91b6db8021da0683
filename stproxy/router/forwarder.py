"""
Single-host reverse proxy handler and the shared upstream HTTP client.

A ReverseProxy is bound to one parsed backend target. It rewrites the inbound
request onto the target's scheme/host/port, streams the body upstream and
streams the backend response back.
"""

import logging
import os
from urllib.parse import SplitResult

import httpx
from fastapi import Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from stproxy.router.utils import build_upstream_url
from stproxy.structured_logging import RequestLogger

logger = logging.getLogger("stproxy.router")

MAX_CONNECTIONS = int(os.getenv("STPROXY_MAX_CONNECTIONS", "100"))
MAX_KEEPALIVE_CONNECTIONS = int(os.getenv("STPROXY_MAX_KEEPALIVE", "20"))
DEFAULT_TIMEOUT = float(os.getenv("STPROXY_TIMEOUT", "60"))

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}


def create_http_client(
    max_connections: int | None = None,
    max_keepalive: int | None = None,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Create the pooled httpx client shared by every forwarding handler.

    Redirects are not followed: 3xx responses are relayed to the caller.

    Args:
        max_connections: Maximum number of concurrent connections
        max_keepalive: Maximum number of keep-alive connections in pool
        timeout: Per-request timeout in seconds
        transport: Optional transport (tests use httpx.MockTransport)
    """
    limits = httpx.Limits(
        max_connections=max_connections or MAX_CONNECTIONS,
        max_keepalive_connections=max_keepalive or MAX_KEEPALIVE_CONNECTIONS,
    )
    logger.debug(
        "Creating HTTP client: max_conn=%d, keepalive=%d",
        limits.max_connections,
        limits.max_keepalive_connections,
    )
    return httpx.AsyncClient(
        limits=limits,
        timeout=httpx.Timeout(timeout or DEFAULT_TIMEOUT),
        follow_redirects=False,
        transport=transport,
    )


def _filter_headers(items: list[tuple[str, str]], connection: str | None) -> list[tuple[str, str]]:
    """Drop hop-by-hop headers, including any named in the Connection header."""
    tokens = {token.strip().lower() for token in (connection or "").split(",") if token.strip()}
    excluded = HOP_BY_HOP_HEADERS | tokens
    return [(k, v) for k, v in items if k.lower() not in excluded]


class ReverseProxy:
    """
    Forwarding handler bound to a single backend target.

    Args:
        target: Parsed absolute target URL
        client: Shared httpx.AsyncClient used for upstream requests
    """

    def __init__(self, target: SplitResult, client: httpx.AsyncClient):
        self.target = target
        self.client = client

    def __repr__(self) -> str:
        return f"ReverseProxy({self.target.geturl()!r})"

    def upstream_url(self, rest: str, query: str = "") -> str:
        return build_upstream_url(self.target, rest, query)

    def outbound_headers(self, request: Request) -> list[tuple[str, str]]:
        """Request headers for the backend: no Host, no hop-by-hop, X-Forwarded-* set."""
        replaced = {"host", "x-forwarded-for", "x-forwarded-host", "x-forwarded-proto"}
        headers = [
            (k, v)
            for k, v in _filter_headers(request.headers.items(), request.headers.get("connection"))
            if k.lower() not in replaced
        ]

        client_ip = request.client.host if request.client else None
        prior = request.headers.get("x-forwarded-for")
        if client_ip:
            headers.append(("X-Forwarded-For", f"{prior}, {client_ip}" if prior else client_ip))
        elif prior:
            headers.append(("X-Forwarded-For", prior))
        original_host = request.headers.get("host")
        if original_host:
            headers.append(("X-Forwarded-Host", original_host))
        headers.append(("X-Forwarded-Proto", request.url.scheme or "http"))
        return headers

    async def forward(self, request: Request, rest: str, request_id: str) -> Response:
        """
        Relay ``request`` to the target with ``rest`` as the path.

        Upstream failures (connection refused, timeout, protocol errors) are
        logged and answered with 502.
        """
        log = RequestLogger(logger, request_id)
        url = self.upstream_url(rest, request.url.query)

        # Bodyless requests stay bodyless; anything else is streamed, with the
        # client's Content-Length kept so httpx only chunks unsized bodies.
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
        upstream_request = self.client.build_request(
            method=request.method,
            url=url,
            headers=self.outbound_headers(request),
            content=request.stream() if has_body else None,
        )
        try:
            upstream_resp = await self.client.send(upstream_request, stream=True)
        except httpx.RequestError as exc:
            log.warning("Upstream request failed for %s %s: %s", request.method, url, exc)
            return PlainTextResponse("502: Bad gateway", status_code=502)

        log.debug("%s %s -> %d", request.method, url, upstream_resp.status_code)
        response = StreamingResponse(
            upstream_resp.aiter_raw(),
            status_code=upstream_resp.status_code,
            background=BackgroundTask(upstream_resp.aclose),
        )
        # Raw bytes are relayed untouched, so the backend's framing headers stay valid.
        # multi_items() keeps repeated headers such as Set-Cookie separate.
        response.raw_headers = [
            (k.lower().encode("latin-1"), v.encode("latin-1"))
            for k, v in _filter_headers(upstream_resp.headers.multi_items(), upstream_resp.headers.get("connection"))
        ]
        return response
