"""
webkit - HTTP Server Lifecycle
================================

What:  Runs the ASGI app under uvicorn, waits for a termination signal, then
       shuts down gracefully within a fixed deadline.
Who:   `webkit.main.main()` through run(); tests drive Server.serve() directly.

State Machine:
    STARTING ──bind + uvicorn startup──▶ RUNNING
    RUNNING ──SIGINT / SIGTERM / request_shutdown()──▶ SHUTTING_DOWN
    SHUTTING_DOWN ──in-flight requests drained──▶ STOPPED

    Every failure is fatal; nothing is retried:
        bind failure                        → BindError
        listener exits on its own           → ServerError
        drain exceeds shutdown_timeout      → ShutdownTimeoutError

Concurrency:
    Two tasks matter. The listener task runs uvicorn's accept loop (uvicorn
    gives every request its own task). The serving task waits for the
    shutdown request, then drives and bounds the drain.

Signals:
    This module owns signal handling; uvicorn's own signal capture is turned
    off. SIGKILL is deliberately absent from the defaults: it cannot be
    caught, so listening for it would never fire.
"""

import asyncio
import contextlib
import logging
import signal
import socket
import threading
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

import uvicorn
from fastapi import FastAPI

from webkit.config import ServerConf
from webkit.exceptions import BindError, ServerError, ShutdownTimeoutError, WebkitError
from webkit.logger import fatal

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT = 30.0
DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# How often startup progress is checked while uvicorn boots
_STARTUP_POLL_INTERVAL = 0.05


class ServerState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


def parse_address(addr: str) -> Tuple[str, int]:
    """
    Split a listen address into (host, port).

    ":3000"          → ("0.0.0.0", 3000)
    "127.0.0.1:"     → ("127.0.0.1", 0)   empty port: ephemeral
    "127.0.0.1:8080" → ("127.0.0.1", 8080)
    "[::1]:8080"     → ("::1", 8080)

    Raises:
        ServerError: Missing or invalid port.
    """
    host, sep, port = addr.strip().rpartition(":")
    if not sep:
        raise ServerError(f"invalid listen address '{addr}': missing port", addr=addr)

    if port == "":
        port = "0"

    try:
        port_num = int(port)
    except ValueError:
        raise ServerError(f"invalid listen address '{addr}': bad port", addr=addr) from None
    if not 0 <= port_num <= 65535:
        raise ServerError(f"invalid listen address '{addr}': port out of range", addr=addr)

    return host.strip("[]") or "0.0.0.0", port_num


class _UvicornServer(uvicorn.Server):
    """uvicorn.Server that leaves signal handling to the Server class below."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class Server:
    """
    Owns one listener and its shutdown sequence.

    Usage:
        server = Server(app, config.server)
        await server.serve()          # returns after a clean shutdown

    Attributes:
        addr:              Listen address as configured (e.g. ":3000")
        host, port:        Parsed address; port is updated to the bound port
                           after binding (useful with ":0")
        shutdown_timeout:  Seconds allowed for in-flight requests to finish
        state:             Current ServerState
    """

    def __init__(
        self,
        app: FastAPI,
        conf: ServerConf,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        signals: Iterable[int] = DEFAULT_SIGNALS,
    ):
        self.app = app
        self.addr = conf.port
        self.host, self.port = parse_address(conf.port)
        self.shutdown_timeout = shutdown_timeout
        self.signals = tuple(signals)
        self.state = ServerState.STARTING

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._uvicorn: Optional[_UvicornServer] = None
        self._shutdown_requested = asyncio.Event()
        self._running = asyncio.Event()
        # (signal, previous handler); previous is None for loop-level handlers
        self._installed_signals: List[Tuple[int, object]] = []

    # ── Public API ────────────────────────────────────────────────────────

    async def serve(self) -> None:
        """
        Run the full lifecycle: bind, serve, wait for a signal, drain, stop.

        Raises:
            BindError:             The address could not be bound.
            ServerError:           uvicorn failed to start or stopped by itself.
            ShutdownTimeoutError:  Requests were still running at the deadline.
        """
        self._loop = asyncio.get_running_loop()
        sock = self._bind()

        config = uvicorn.Config(
            self.app,
            log_config=None,
            access_log=False,
            lifespan="auto",
        )
        self._uvicorn = _UvicornServer(config)
        listener = asyncio.create_task(
            self._uvicorn.serve(sockets=[sock]), name="webkit-listener"
        )

        self._install_signal_handlers()
        try:
            await self._wait_started(listener)
            self.state = ServerState.RUNNING
            self._running.set()
            logger.info("server is running at %s", self.addr)

            await self._wait_for_shutdown_request(listener)
            await self._shutdown(listener)
        finally:
            self._remove_signal_handlers()
            if not listener.done():
                listener.cancel()
                await asyncio.gather(listener, return_exceptions=True)
            sock.close()

        logger.info("Server exited")

    def request_shutdown(self) -> None:
        """
        Ask a running server to shut down. Safe from any thread, and idempotent.

        A request made before serve() starts takes effect as soon as the
        server is running.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            self._shutdown_requested.set()
            return

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        if current is loop:
            self._shutdown_requested.set()
        else:
            loop.call_soon_threadsafe(self._shutdown_requested.set)

    async def wait_running(self) -> None:
        """Block until the server has reached RUNNING."""
        await self._running.wait()

    # ── Lifecycle Steps ───────────────────────────────────────────────────

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            raise BindError(
                f"listen tcp {self.addr}: {exc.strerror or exc}", addr=self.addr
            ) from exc

        self.port = sock.getsockname()[1]
        return sock

    async def _wait_started(self, listener: "asyncio.Task[None]") -> None:
        while not self._uvicorn.started:
            if listener.done():
                cause = None if listener.cancelled() else listener.exception()
                raise ServerError("server failed to start", addr=self.addr) from cause
            await asyncio.sleep(_STARTUP_POLL_INTERVAL)

    async def _wait_for_shutdown_request(self, listener: "asyncio.Task[None]") -> None:
        waiter = asyncio.create_task(self._shutdown_requested.wait())
        done, _ = await asyncio.wait(
            {listener, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        if waiter not in done:
            waiter.cancel()
            cause = None if listener.cancelled() else listener.exception()
            raise ServerError("server stopped unexpectedly", addr=self.addr) from cause

    async def _shutdown(self, listener: "asyncio.Task[None]") -> None:
        """
        Stop accepting, wait for in-flight requests, give up at the deadline.

        uvicorn's own graceful timeout is left unset; the deadline is enforced
        here so that running out of time is reported as a failure.
        """
        self.state = ServerState.SHUTTING_DOWN
        logger.info(
            "Shutting down server (deadline %gs)...", self.shutdown_timeout
        )
        self._uvicorn.should_exit = True

        try:
            await asyncio.wait_for(asyncio.shield(listener), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            self._uvicorn.force_exit = True
            listener.cancel()
            await asyncio.gather(listener, return_exceptions=True)
            self.state = ServerState.STOPPED
            raise ShutdownTimeoutError(self.shutdown_timeout, addr=self.addr) from None
        except Exception as exc:
            self.state = ServerState.STOPPED
            raise ServerError(f"Server shutdown: {exc}", addr=self.addr) from exc

        self.state = ServerState.STOPPED

    # ── Signal Handling ───────────────────────────────────────────────────

    def _handle_signal(self, signum: int) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        self.request_shutdown()

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Not in the main thread; signal handlers not installed")
            return

        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
                self._installed_signals.append((sig, None))
            except NotImplementedError:
                # Event loops without add_signal_handler (Windows)
                previous = signal.signal(
                    sig,
                    lambda signum, frame: self._loop.call_soon_threadsafe(
                        self._handle_signal, signum
                    ),
                )
                self._installed_signals.append((sig, previous))

    def _remove_signal_handlers(self) -> None:
        for sig, previous in self._installed_signals:
            if previous is None:
                self._loop.remove_signal_handler(sig)
            else:
                signal.signal(sig, previous)
        self._installed_signals.clear()


def run(
    app: FastAPI,
    conf: ServerConf,
    before_serve: Optional[Callable[[], Awaitable[None]]] = None,
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
) -> None:
    """
    Process-level entry: serve `app` until a signal, exiting fatally on failure.

    Args:
        app:              The ASGI application.
        conf:             Server section of the configuration.
        before_serve:     Async startup work that must share the server's event
                          loop (database engine, validator). Runs first.
        shutdown_timeout: Graceful shutdown deadline in seconds.

    Any WebkitError, from before_serve or the lifecycle, ends the process via
    fatal() with exit status 1. A clean shutdown simply returns.
    """

    async def _main() -> None:
        server = Server(app, conf, shutdown_timeout=shutdown_timeout)
        if before_serve is not None:
            await before_serve()
        await server.serve()

    try:
        asyncio.run(_main())
    except WebkitError as exc:
        fatal("%s", exc.message)
    except KeyboardInterrupt:
        fatal("interrupted during startup")
