"""
webkit - HTTP Server Lifecycle Tests
======================================

What:  Tests for Server.serve(): startup, signal-driven shutdown, the
       shutdown deadline, bind failures and the fatal run() wrapper.
How:   Real uvicorn listeners on 127.0.0.1 with an ephemeral port; requests
       made with httpx. SIGUSR1 stands in for SIGTERM so the test runner's
       own handlers are left alone.

What we test:
    ✅ Address parsing (":3000", "host:port", "[::1]:port", "host:")
    ✅ RUNNING after startup; a request is served
    ✅ Signal → drain → STOPPED, and the port stops accepting
    ✅ In-flight request past the deadline → ShutdownTimeoutError
    ✅ Address already in use → BindError
    ✅ run() turns startup failures into SystemExit(1)
"""

import asyncio
import os
import signal
import socket
import time

import httpx
import pytest
from fastapi import FastAPI

from webkit.config import ServerConf
from webkit.exceptions import BindError, DatabaseError, ServerError, ShutdownTimeoutError
from webkit.server import Server, ServerState, parse_address, run

requires_sigusr1 = pytest.mark.skipif(
    not hasattr(signal, "SIGUSR1"), reason="SIGUSR1 not available on this platform"
)


def make_app() -> FastAPI:
    app = FastAPI()

    @app.get("/ping")
    async def ping():
        return {"message": "pong"}

    return app


async def start(server: Server) -> "asyncio.Task[None]":
    task = asyncio.create_task(server.serve())
    running = asyncio.create_task(server.wait_running())
    done, _ = await asyncio.wait({task, running}, timeout=10, return_when=asyncio.FIRST_COMPLETED)
    if running not in done:
        running.cancel()
        if task.done():
            task.result()
        raise AssertionError("server did not start")
    return task


class TestParseAddress:

    @pytest.mark.parametrize(
        "addr, expected",
        [
            (":3000", ("0.0.0.0", 3000)),
            ("127.0.0.1:8080", ("127.0.0.1", 8080)),
            ("[::1]:8080", ("::1", 8080)),
            ("localhost:0", ("localhost", 0)),
            ("127.0.0.1:", ("127.0.0.1", 0)),
            (":", ("0.0.0.0", 0)),
        ],
    )
    def test_valid(self, addr, expected):
        assert parse_address(addr) == expected

    @pytest.mark.parametrize("addr", ["3000", "host:http", ":70000", ":-1"])
    def test_invalid(self, addr):
        with pytest.raises(ServerError):
            parse_address(addr)


class TestServeAndShutdown:

    @requires_sigusr1
    @pytest.mark.asyncio
    async def test_signal_triggers_clean_shutdown(self):
        """An idle server stops well within the deadline after a signal."""
        server = Server(make_app(), ServerConf(port="127.0.0.1:0"), signals=(signal.SIGUSR1,))
        assert server.state == ServerState.STARTING

        serve_task = await start(server)
        assert server.state == ServerState.RUNNING
        assert server.port != 0

        url = f"http://127.0.0.1:{server.port}/ping"
        async with httpx.AsyncClient() as client:
            response = await client.get(url)
        assert response.status_code == 200
        assert response.json() == {"message": "pong"}

        started = time.monotonic()
        os.kill(os.getpid(), signal.SIGUSR1)
        await asyncio.wait_for(serve_task, timeout=10)

        assert time.monotonic() - started < server.shutdown_timeout
        assert server.state == ServerState.STOPPED

        with pytest.raises(httpx.ConnectError):
            async with httpx.AsyncClient() as client:
                await client.get(url)

    @pytest.mark.asyncio
    async def test_request_shutdown(self):
        server = Server(make_app(), ServerConf(port="127.0.0.1:0"), signals=())
        serve_task = await start(server)

        server.request_shutdown()
        server.request_shutdown()
        await asyncio.wait_for(serve_task, timeout=10)

        assert server.state == ServerState.STOPPED

    @pytest.mark.asyncio
    async def test_empty_port_binds_ephemeral(self):
        server = Server(make_app(), ServerConf(port="127.0.0.1:"), signals=())
        serve_task = await start(server)
        try:
            assert server.port > 0
            async with httpx.AsyncClient() as client:
                response = await client.get(f"http://127.0.0.1:{server.port}/ping")
            assert response.status_code == 200
        finally:
            server.request_shutdown()
            await asyncio.wait_for(serve_task, timeout=10)

    @pytest.mark.asyncio
    async def test_in_flight_request_completes_during_drain(self):
        """A request already running when shutdown starts still gets its response."""
        entered = asyncio.Event()
        app = make_app()

        @app.get("/work")
        async def work():
            entered.set()
            await asyncio.sleep(0.3)
            return {"done": True}

        server = Server(app, ServerConf(port="127.0.0.1:0"), shutdown_timeout=5, signals=())
        serve_task = await start(server)

        async with httpx.AsyncClient(timeout=10) as client:
            request_task = asyncio.create_task(client.get(f"http://127.0.0.1:{server.port}/work"))
            await asyncio.wait_for(entered.wait(), timeout=5)
            server.request_shutdown()

            response = await request_task
            await asyncio.wait_for(serve_task, timeout=10)

        assert response.status_code == 200
        assert response.json() == {"done": True}
        assert server.state == ServerState.STOPPED

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self):
        """A handler that outlives the deadline makes serve() fail."""
        entered = asyncio.Event()
        app = make_app()

        @app.get("/slow")
        async def slow():
            entered.set()
            await asyncio.sleep(3)
            return {}

        server = Server(app, ServerConf(port="127.0.0.1:0"), shutdown_timeout=0.3, signals=())
        serve_task = await start(server)

        client = httpx.AsyncClient(timeout=10)
        request_task = asyncio.create_task(client.get(f"http://127.0.0.1:{server.port}/slow"))
        try:
            await asyncio.wait_for(entered.wait(), timeout=5)
            server.request_shutdown()

            with pytest.raises(ShutdownTimeoutError) as exc_info:
                await asyncio.wait_for(serve_task, timeout=10)

            assert exc_info.value.timeout == 0.3
            assert "deadline" in exc_info.value.message
            assert server.state == ServerState.STOPPED
        finally:
            request_task.cancel()
            await asyncio.gather(request_task, return_exceptions=True)
            await client.aclose()

    @pytest.mark.asyncio
    async def test_shutdown_requested_before_serve(self):
        server = Server(make_app(), ServerConf(port="127.0.0.1:0"), signals=())
        server.request_shutdown()

        await asyncio.wait_for(server.serve(), timeout=10)

        assert server.state == ServerState.STOPPED


class TestBindFailure:

    @pytest.mark.asyncio
    async def test_address_in_use(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        try:
            server = Server(make_app(), ServerConf(port=f"127.0.0.1:{port}"), signals=())
            with pytest.raises(BindError) as exc_info:
                await server.serve()
            assert f"127.0.0.1:{port}" in exc_info.value.message
            assert server.state == ServerState.STARTING
        finally:
            blocker.close()


class TestRun:

    def test_startup_failure_is_fatal(self):
        async def failing_startup():
            raise DatabaseError("database init fail: unreachable")

        with pytest.raises(SystemExit) as exc_info:
            run(make_app(), ServerConf(port="127.0.0.1:0"), before_serve=failing_startup)

        assert exc_info.value.code == 1

    def test_bad_address_is_fatal(self):
        with pytest.raises(SystemExit) as exc_info:
            run(make_app(), ServerConf(port="no-port"))

        assert exc_info.value.code == 1
