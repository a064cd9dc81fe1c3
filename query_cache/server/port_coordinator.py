"""
Lazy, single-flight startup of the query cache proxy server.

`PortCoordinator.ensure_started()` is safe to call from every configuration
phase and from any event loop. The first call starts a daemon thread that
binds the socket and serves uvicorn on the thread's own loop, so the server
outlives whichever loop the build tool used to drive the hook. Every other
call awaits the same startup and gets the same port. A failed startup is
never retried.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import socket
import threading
from typing import Any, Iterator, Optional

import uvicorn

from ..config.models import DEFAULT_HOST, QueryCachePluginOptions
from ..exceptions import StartupFailure
from ..services.request_handler import create_request_handler
from .app import create_app
from .port_state import PortState

logger = logging.getLogger(__name__)

STARTUP_POLL_INTERVAL = 0.01
SHUTDOWN_TIMEOUT_SECONDS = 5.0


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves the host process's signal handling alone."""

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class PortCoordinator:
    """
    Own the proxy server thread, its listening socket, and the resolved `PortState`.
    """

    def __init__(
        self,
        app: Any,
        *,
        host: str = DEFAULT_HOST,
        port: int = 0,
        state: Optional[PortState] = None,
        startup_timeout: Optional[float] = None,
    ) -> None:
        self.app = app
        self.host = host
        self.requested_port = port
        self.state = state if state is not None else PortState()
        self.startup_timeout = startup_timeout
        self.bind_attempts = 0
        self._lock = threading.Lock()
        self._startup: Optional["concurrent.futures.Future[int]"] = None
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[uvicorn.Server] = None
        self._socket: Optional[socket.socket] = None

    @classmethod
    def from_options(cls, options: QueryCachePluginOptions) -> "PortCoordinator":
        handler = create_request_handler(
            fetch=options.fetch,
            calculate_cache_key=options.calculate_cache_key,
            cache_ttl_seconds=options.cache_ttl_seconds,
        )
        return cls(
            create_app(handler),
            host=options.host,
            port=options.port,
            startup_timeout=options.startup_timeout,
        )

    @property
    def port(self) -> int:
        return self.state.current

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    async def ensure_started(self) -> int:
        """Start the server once and return its bound port."""
        with self._lock:
            if self._startup is None:
                self._startup = concurrent.futures.Future()
                # A cancelled caller must not cancel the shared startup.
                self._startup.set_running_or_notify_cancel()
                self._thread = threading.Thread(
                    target=self._run,
                    name="query-cache-server",
                    daemon=True,
                )
                self._thread.start()
            startup = self._startup
        return await asyncio.wrap_future(startup)

    def close(self, timeout: float = SHUTDOWN_TIMEOUT_SECONDS) -> None:
        """Stop the server thread if it is running. The port state stays resolved."""
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)

    async def aclose(self) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self.close)

    # ------------------------------------------------------------------ #
    # Server thread
    # ------------------------------------------------------------------ #
    def _run(self) -> None:
        startup = self._startup
        failure: Optional[StartupFailure] = None
        self.bind_attempts += 1
        try:
            self._socket = self._bind_socket()
            asyncio.run(self._serve(self._socket))
        except StartupFailure as exc:
            failure = exc
        except BaseException as exc:
            if startup.done():
                logger.error("[QUERY-CACHE] Server stopped unexpectedly: %s", exc)
            else:
                failure = StartupFailure(f"Query cache server crashed during startup: {exc!r}")
                failure.__cause__ = exc
        finally:
            if self._socket is not None:
                self._socket.close()
            if not startup.done():
                if failure is None:
                    failure = StartupFailure(
                        "Query cache server stopped before it started listening"
                    )
                logger.error("[QUERY-CACHE] Server startup failed: %s", failure)
                startup.set_exception(failure)

    async def _serve(self, sock: socket.socket) -> None:
        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level="warning",
            lifespan="off",
            access_log=False,
        )
        server = _EmbeddedServer(config)
        self._server = server
        serve_task = asyncio.ensure_future(server.serve(sockets=[sock]))

        try:
            await self._wait_until_started(server, serve_task)
            port = self._resolve_port(self._listening_address(server))
        except BaseException:
            if not serve_task.done():
                serve_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await serve_task
            raise

        self.state.resolve(port)
        logger.info("[QUERY-CACHE] Up on port %d.", port)
        self._startup.set_result(port)
        await serve_task

    def _bind_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.requested_port))
        except OSError as exc:
            sock.close()
            raise StartupFailure(
                f"Could not bind {self.host}:{self.requested_port}: {exc}"
            ) from exc
        return sock

    async def _wait_until_started(
        self,
        server: uvicorn.Server,
        serve_task: "asyncio.Future[None]",
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = None if self.startup_timeout is None else loop.time() + self.startup_timeout
        while not server.started:
            if serve_task.done():
                cause = None if serve_task.cancelled() else serve_task.exception()
                raise StartupFailure(
                    "Query cache server stopped before it started listening"
                ) from cause
            if deadline is not None and loop.time() >= deadline:
                raise StartupFailure(
                    f"Query cache server did not start within {self.startup_timeout}s"
                )
            await asyncio.sleep(STARTUP_POLL_INTERVAL)

    @staticmethod
    def _listening_address(server: uvicorn.Server) -> Any:
        for srv in getattr(server, "servers", []):
            for sock in getattr(srv, "sockets", None) or []:
                return sock.getsockname()
        return None

    @staticmethod
    def _resolve_port(address: Any) -> int:
        if not isinstance(address, tuple) or len(address) < 2:
            raise StartupFailure(f"Could not get port from listening address {address!r}")
        port = address[1]
        if not isinstance(port, int) or port <= 0:
            raise StartupFailure(f"Could not get port from listening address {address!r}")
        return port
