"""
webkit - Test Configuration (conftest.py)
===========================================

What:  Shared pytest fixtures for the whole suite.
How:   pytest auto-discovers this file; fixtures are function-scoped.

Fixture Hierarchy:
    clean_env       Environment with every webkit variable removed
    sqlite_conf     DBConf pointing at a throwaway SQLite file
    app_config      Config using sqlite_conf and an ephemeral port
    sqlite_engine   Live async engine from init_db(sqlite_conf)
    test_client     HTTPX AsyncClient bound to create_app(app_config, engine)
"""

import logging

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from webkit.config import Config, DBConf, ServerConf
from webkit.database import dispose_engine, init_db

ENV_KEYS = (
    "SERVER_PORT",
    "DB_TYPE",
    "DB_CONN",
    "DB_LOG_LEVEL",
    "LOG_LEVEL",
    "WEBKIT_CONFIG_DIR",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Removes every variable webkit reads so defaults are observable."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def sqlite_conf(tmp_path):
    """DBConf for a fresh SQLite file; SQL logging silenced."""
    return DBConf(type="sqlite", conn=str(tmp_path / "test.db"), log_level=1)


@pytest.fixture
def app_config(sqlite_conf):
    return Config(server=ServerConf(port="127.0.0.1:0"), db=sqlite_conf)


@pytest_asyncio.fixture
async def sqlite_engine(sqlite_conf):
    engine = await init_db(sqlite_conf)
    yield engine
    await dispose_engine(engine)


@pytest_asyncio.fixture
async def test_client(app_config, sqlite_engine):
    """
    HTTPX AsyncClient talking to the app in-process.

    Usage:
        async def test_ping(test_client):
            response = await test_client.get("/ping")
            assert response.status_code == 200
    """
    from webkit.main import create_app

    app = create_app(app_config, sqlite_engine)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def restore_logging():
    """Snapshot and restore root logging around tests that call init_logger()."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
