"""
HTTP listener lifecycle: Idle -> Serving -> ShuttingDown -> Stopped.

The listening socket is bound up front so bind failures surface immediately;
uvicorn then serves the router on a background task and drains in-flight
requests for a bounded grace period once the shutdown signal fires.
"""

import asyncio
import contextlib
import enum
import logging
import math
import os
import socket

import uvicorn
from fastapi import FastAPI

logger = logging.getLogger("stproxy.server")

DEFAULT_HOST = "0.0.0.0"
GRACE_PERIOD = float(os.getenv("STPROXY_GRACE_PERIOD", "5.0"))
STARTUP_POLL_INTERVAL = 0.05


class ListenerError(Exception):
    """Raised when the HTTP listener cannot bind or start."""


class ListenerState(enum.Enum):
    IDLE = "idle"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class _Server(uvicorn.Server):
    """uvicorn server that leaves signal handling to the ShutdownCoordinator."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def bind_socket(host: str, port: int) -> socket.socket:
    """
    Bind a listening TCP socket.

    Raises:
        ListenerError: if the address is in use or not permitted
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(socket.SOMAXCONN)
        sock.setblocking(False)
    except OSError as exc:
        sock.close()
        raise ListenerError(f"listen: cannot bind {host}:{port}: {exc}") from exc
    return sock


class ProxyServer:
    """
    Owns the listening socket and the uvicorn server for the proxy app.

    Args:
        app: ASGI application to serve
        port: TCP port to listen on (0 picks an ephemeral port)
        host: Interface address to bind
        grace_period: Seconds in-flight requests get to finish on shutdown
    """

    def __init__(self, app: FastAPI, port: int, host: str = DEFAULT_HOST, grace_period: float = GRACE_PERIOD):
        self.app = app
        self.host = host
        self.port = port
        self.grace_period = grace_period
        self.state = ListenerState.IDLE
        self._sock: socket.socket | None = None
        self._server: _Server | None = None

    @property
    def bound_port(self) -> int | None:
        if self._sock is None:
            return None
        return self._sock.getsockname()[1]

    @property
    def started(self) -> bool:
        return self._server is not None and self._server.started

    @property
    def drain_timeout(self) -> int:
        """uvicorn takes whole seconds; fractional grace periods round up."""
        return max(1, math.ceil(self.grace_period))

    def bind(self) -> None:
        """Bind the listening socket (fatal on failure)."""
        if self._sock is None:
            self._sock = bind_socket(self.host, self.port)
            logger.debug("Bound %s:%d", self.host, self.bound_port)

    def _make_server(self) -> _Server:
        config = uvicorn.Config(
            self.app,
            log_config=None,
            access_log=False,
            lifespan="on",
            timeout_graceful_shutdown=self.drain_timeout,
        )
        return _Server(config)

    async def wait_started(self, timeout: float = 10.0) -> None:
        """Wait until uvicorn reports it is accepting connections."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.started:
            if self.state is ListenerState.STOPPED:
                raise ListenerError("Proxy Server failed to start")
            if loop.time() > deadline:
                raise ListenerError(f"Proxy Server did not start within {timeout}s")
            await asyncio.sleep(STARTUP_POLL_INTERVAL)

    async def serve(self, shutdown: asyncio.Event) -> None:
        """
        Serve until ``shutdown`` is set, then drain.

        Raises:
            ListenerError: if the socket cannot be bound or uvicorn fails to start
        """
        self.bind()
        self._server = self._make_server()
        serve_task = asyncio.create_task(self._server.serve(sockets=[self._sock]))
        self.state = ListenerState.SERVING

        shutdown_wait = asyncio.create_task(shutdown.wait())
        try:
            done, _ = await asyncio.wait({serve_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            shutdown_wait.cancel()

        if serve_task in done:
            # uvicorn returned on its own: startup failed or it was told to exit
            self.state = ListenerState.STOPPED
            self.close()
            exc = serve_task.exception()
            if exc is not None or not self._server.started:
                raise ListenerError(f"Proxy Server failed: {exc or 'startup aborted'}")
            return

        logger.info("Proxy Server Stopped")
        await self._shutdown(serve_task)

    async def _shutdown(self, serve_task: asyncio.Task) -> None:
        """Stop accepting and wait for in-flight requests, bounded by the grace period."""
        self.state = ListenerState.SHUTTING_DOWN
        if not self._server.started and not serve_task.done():
            # uvicorn skips its own shutdown if told to exit mid-startup
            with contextlib.suppress(ListenerError):
                await self.wait_started(timeout=self.grace_period)
        self._server.should_exit = True
        # uvicorn polls should_exit every 0.1s and enforces the grace period itself;
        # the outer bound only guards against it hanging in lifespan shutdown.
        try:
            done, _ = await asyncio.wait({serve_task}, timeout=self.drain_timeout + 1.0)
            if not done:
                logger.error(
                    "Proxy Server Shutdown Failed: in-flight requests exceeded %ds grace period",
                    self.drain_timeout,
                )
                self._server.force_exit = True
                serve_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await serve_task
            elif serve_task.exception() is not None:
                logger.error("Proxy Server Shutdown Failed: %s", serve_task.exception())
            else:
                logger.info("Proxy Server Exited Properly")
        except Exception as exc:
            logger.error("Proxy Server Shutdown Failed: %s", exc)
        finally:
            self.close()
            self.state = ListenerState.STOPPED

    def close(self) -> None:
        """Release the listening socket if it is still open."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None
