"""
FastAPI application: path-prefix dispatch to cached reverse proxies.
"""

import asyncio
import inspect
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager

import httpx
import websockets
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse, Response
from websockets.exceptions import ConnectionClosed, WebSocketException

from stproxy import __version__
from stproxy.config import Configuration
from stproxy.router.cache import ProxyCache
from stproxy.router.forwarder import ReverseProxy, create_http_client
from stproxy.router.utils import InvalidTargetError, build_upstream_url, parse_target_url, split_request_path
from stproxy.structured_logging import RequestLogger

logger = logging.getLogger("stproxy.router")

LOG_REQUESTS = os.getenv("STPROXY_LOG_REQUESTS", "").lower() in {"1", "true", "yes", "on"}

_WS_HEADERS_PARAM: str | None = None


def _ws_connect(url: str, extra_headers: list[tuple[str, str]] | None, subprotocols: list[str] | None):
    """Create a websockets client connection with version-compatible kwargs."""
    kwargs: dict = {}
    if subprotocols:
        kwargs["subprotocols"] = subprotocols

    if extra_headers:
        global _WS_HEADERS_PARAM
        if _WS_HEADERS_PARAM is None:
            params = set(inspect.signature(websockets.connect).parameters)
            if "additional_headers" in params:
                _WS_HEADERS_PARAM = "additional_headers"
            elif "extra_headers" in params:
                _WS_HEADERS_PARAM = "extra_headers"
            else:
                _WS_HEADERS_PARAM = ""
        if _WS_HEADERS_PARAM:
            kwargs[_WS_HEADERS_PARAM] = extra_headers

    return websockets.connect(url, **kwargs)


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def raw_request_path(scope: dict) -> str:
    """Undecoded request path, so percent-escapes in <rest> reach the backend intact."""
    raw_path = scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1")
    return scope.get("path", "")


def forbidden_response(prefix: str) -> PlainTextResponse:
    return PlainTextResponse(f"403: Host forbidden for path prefix {prefix}", status_code=403)


def create_app(
    config: Configuration,
    cache: ProxyCache | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """
    Create the proxy application.

    Args:
        config: Routing configuration (prefix -> target URL)
        cache: Proxy cache to populate; a fresh one is created if omitted
        http_client: Upstream client; a pooled client is created if omitted

    Returns:
        Configured FastAPI app instance
    """
    proxy_cache: ProxyCache[ReverseProxy] = cache if cache is not None else ProxyCache()
    client = http_client or create_http_client()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.aclose()
        logger.info("HTTP client closed")

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.config = config
    app.state.proxy_cache = proxy_cache
    app.state.http_client = client
    app.state.version = __version__

    def resolve(prefix: str, log: RequestLogger) -> ReverseProxy | PlainTextResponse:
        """Find or build the handler for ``prefix``; a response means rejection."""
        handler = proxy_cache.get(prefix)
        if handler is not None:
            return handler

        target_value = config.hosts.get(prefix)
        if target_value is None:
            log.info("No host configured for path prefix '%s'", prefix)
            return forbidden_response(prefix)

        try:
            target = parse_target_url(target_value)
        except InvalidTargetError as exc:
            log.warning("target parse fail: %s", exc)
            return PlainTextResponse(f"502: Bad gateway target for path prefix {prefix}", status_code=502)

        return proxy_cache.get_or_create(prefix, lambda: ReverseProxy(target, client))

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = new_request_id()
        request.state.request_id = request_id
        start = time.time()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        if LOG_REQUESTS:
            duration_ms = int((time.time() - start) * 1000)
            logger.info(
                "[%s] %s %s -> %d (%dms)",
                request_id,
                request.method,
                request.url.path or "/",
                response.status_code,
                duration_ms,
            )
        return response

    @app.websocket("/{full_path:path}")
    async def websocket_proxy(websocket: WebSocket, full_path: str):
        """Tunnel WebSocket connections to the prefix's backend."""
        request_id = new_request_id()
        log = RequestLogger(logger, request_id)

        parts = split_request_path(raw_request_path(websocket.scope))
        if parts is None:
            await websocket.close(code=1008, reason="Malformed request path")
            return
        prefix, rest = parts

        resolved = resolve(prefix, log)
        if not isinstance(resolved, ReverseProxy):
            code = 1008 if resolved.status_code == 403 else 1011
            await websocket.close(code=code, reason=resolved.body.decode("utf-8"))
            return

        ws_scheme = "wss" if resolved.target.scheme == "https" else "ws"
        upstream_url = build_upstream_url(resolved.target, rest, websocket.url.query, scheme=ws_scheme)
        log.info("WebSocket connection: /%s -> %s", prefix, upstream_url)

        skip_headers = {
            "host",
            "connection",
            "upgrade",
            "sec-websocket-key",
            "sec-websocket-version",
            "sec-websocket-extensions",
            "sec-websocket-protocol",
        }
        extra_headers: list[tuple[str, str]] = []
        for name_bytes, value_bytes in websocket.headers.raw:
            name = name_bytes.decode("latin-1")
            if name.lower() in skip_headers:
                continue
            extra_headers.append((name, value_bytes.decode("latin-1")))

        protocol_header = websocket.headers.get("sec-websocket-protocol")
        subprotocols = None
        if protocol_header:
            subprotocols = [p.strip() for p in protocol_header.split(",") if p.strip()]

        try:
            async with _ws_connect(upstream_url, extra_headers, subprotocols) as upstream_ws:
                await websocket.accept(subprotocol=upstream_ws.subprotocol)

                async def client_to_upstream():
                    try:
                        while True:
                            data = await websocket.receive()
                            if data.get("type") == "websocket.disconnect":
                                break
                            if data.get("text") is not None:
                                await upstream_ws.send(data["text"])
                            elif data.get("bytes") is not None:
                                await upstream_ws.send(data["bytes"])
                    except WebSocketDisconnect:
                        pass

                async def upstream_to_client():
                    try:
                        async for message in upstream_ws:
                            if isinstance(message, str):
                                await websocket.send_text(message)
                            else:
                                await websocket.send_bytes(message)
                    except ConnectionClosed:
                        pass

                done, pending = await asyncio.wait(
                    [
                        asyncio.create_task(client_to_upstream()),
                        asyncio.create_task(upstream_to_client()),
                    ],
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in pending:
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
        except (OSError, WebSocketException) as exc:
            log.warning("WebSocket proxy error for %s: %s", upstream_url, exc)
            try:
                await websocket.close(code=1011, reason="Upstream connection failed")
            except RuntimeError:
                pass

    async def dispatch(request: Request) -> Response:
        """Forward any HTTP method, WebDAV and custom verbs included."""
        request_id = getattr(request.state, "request_id", None) or new_request_id()
        log = RequestLogger(logger, request_id)

        path = raw_request_path(request.scope)
        parts = split_request_path(path)
        if parts is None:
            log.info("Malformed request path: %s", path)
            return PlainTextResponse(f"400: Malformed request path {path}", status_code=400)
        prefix, rest = parts

        resolved = resolve(prefix, log)
        if not isinstance(resolved, ReverseProxy):
            return resolved
        return await resolved.forward(request, rest, request_id)

    # A plain Starlette route with no method list matches every verb
    app.add_route("/{full_path:path}", dispatch)

    return app
