"""
webkit - Database Engine and Session Management
=================================================

What:  Async SQLAlchemy engine built from DBConf, a per-request session
       dependency, and SQL logging driven by the configured log level.
Why:   Centralizes all database connection logic in one place.
How:   init_db() builds the engine and runs SELECT 1 so an unreachable
       database is detected at startup (fatal) rather than on the first request.
Who:   main() at startup; route handlers via Depends(get_db_session).

Connection Pooling:
    pool_size       = max_idle_conn           persistent connections
    max_overflow    = max_open - max_idle     burst connections (-1 if unlimited)
    pool_recycle    = min(max_life_time, max_idle_time) hours, zero values ignored
    pool_pre_ping   = True                    catches stale connections
    SQLite keeps SQLAlchemy's default pool (no sizing arguments apply).

SQL Logging (logger "webkit.sql", DBConf.log_level):
    1 silent   nothing
    2 error    driver errors                    → ERROR
    3 warn     + statements slower than slow_query_time → WARNING
    4 info     + every statement with its duration      → DEBUG
"""

import logging
import shlex
import time
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from sqlalchemy import event, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from webkit.config import DB_LOG_ERROR, DB_LOG_INFO, DB_LOG_SILENT, DB_LOG_WARN, DBConf
from webkit.exceptions import DatabaseError

logger = logging.getLogger(__name__)
sql_logger = logging.getLogger("webkit.sql")

# DBConf.type → async SQLAlchemy driver
_DRIVERS = {
    "pg": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}

# libpq key → URL component
_DSN_URL_KEYS = {
    "host": "host",
    "port": "port",
    "user": "username",
    "password": "password",
    "dbname": "database",
}

_QUERY_START_KEY = "webkit_query_start"

_ANSI_YELLOW = "\033[33m"
_ANSI_RED = "\033[31m"
_ANSI_RESET = "\033[0m"


# ══════════════════════════════════════════════════════════════════════════
# URL Construction
# ══════════════════════════════════════════════════════════════════════════

def _parse_dsn(conn: str) -> Dict[str, str]:
    """Split a libpq key/value DSN ("host=x port=5432 ...") into a dict."""
    params: Dict[str, str] = {}
    try:
        tokens = shlex.split(conn)
    except ValueError as exc:
        raise DatabaseError(f"invalid connection string: {exc}") from exc
    for token in tokens:
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise DatabaseError(f"invalid connection string: expected key=value, got '{token}'")
        params[key] = value
    return params


def build_url(conf: DBConf) -> URL:
    """
    Build the SQLAlchemy URL for DBConf.

    Accepted `conn` forms:
        URL            postgresql://u:p@h:5432/db   (driver added when missing)
        key=value DSN  host=h port=5432 user=u dbname=db password=p sslmode=disable
        file path      ./app.db                     (sqlite only)

    Raises:
        DatabaseError: Unknown database type or unparseable connection string.
    """
    drivername = _DRIVERS.get(conf.type.strip().lower())
    if drivername is None:
        raise DatabaseError(
            f"unsupported database type '{conf.type}'. "
            f"Supported: {', '.join(sorted(_DRIVERS))}",
            context={"type": conf.type},
        )

    conn = conf.conn.strip()
    if "://" in conn:
        try:
            url = make_url(conn)
        except ArgumentError as exc:
            raise DatabaseError(f"invalid connection URL: {exc}") from exc
        if "+" not in url.drivername:
            url = url.set(drivername=drivername)
        return url

    if drivername.startswith("sqlite"):
        return URL.create(drivername, database=conn or None)

    params = _parse_dsn(conn)
    parts: Dict[str, Any] = {}
    for dsn_key, url_key in _DSN_URL_KEYS.items():
        if dsn_key in params:
            parts[url_key] = params.pop(dsn_key)
    if "port" in parts:
        try:
            parts["port"] = int(parts["port"])
        except ValueError as exc:
            raise DatabaseError(f"invalid port '{parts['port']}'") from exc

    return URL.create(drivername, query=params, **parts)


def _pool_recycle(conf: DBConf) -> Optional[int]:
    hours = [h for h in (conf.max_life_time, conf.max_idle_time) if h > 0]
    return min(hours) * 3600 if hours else None


# ══════════════════════════════════════════════════════════════════════════
# SQL Logging
# ══════════════════════════════════════════════════════════════════════════

def _paint(statement: str, color: str, enabled: bool) -> str:
    return f"{color}{statement}{_ANSI_RESET}" if enabled else statement


def _install_sql_logging(engine: AsyncEngine, conf: DBConf) -> None:
    """
    Attach cursor event listeners to the engine's sync core.

    Why sync_engine: SQLAlchemy emits cursor events on the synchronous Engine
    wrapped by AsyncEngine; listeners registered there see every statement.
    """
    level = conf.log_level
    if level <= DB_LOG_SILENT:
        return

    sync_engine = engine.sync_engine
    threshold = conf.slow_query_time.total_seconds()
    colorful = conf.log_colorful

    if level >= DB_LOG_WARN:

        @event.listens_for(sync_engine, "before_cursor_execute")
        def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            conn.info.setdefault(_QUERY_START_KEY, []).append(time.perf_counter())

        @event.listens_for(sync_engine, "after_cursor_execute")
        def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            starts = conn.info.get(_QUERY_START_KEY)
            if not starts:
                return
            elapsed = time.perf_counter() - starts.pop()
            elapsed_ms = elapsed * 1000

            if threshold > 0 and elapsed >= threshold:
                sql_logger.warning(
                    "SLOW SQL >= %s [%.3fms] %s",
                    conf.slow_query_time,
                    elapsed_ms,
                    _paint(statement, _ANSI_YELLOW, colorful),
                )
            elif level >= DB_LOG_INFO:
                sql_logger.debug("[%.3fms] %s", elapsed_ms, statement)

    if level >= DB_LOG_ERROR:

        @event.listens_for(sync_engine, "handle_error")
        def _handle_error(context):
            conn = context.connection
            if conn is not None and conn.info.get(_QUERY_START_KEY):
                conn.info[_QUERY_START_KEY].pop()
            sql_logger.error(
                "SQL error: %s | %s",
                context.original_exception,
                _paint(context.statement or "", _ANSI_RED, colorful),
            )


# ══════════════════════════════════════════════════════════════════════════
# Engine Lifecycle
# ══════════════════════════════════════════════════════════════════════════

def create_engine(conf: DBConf) -> AsyncEngine:
    """
    Create the async engine for DBConf without connecting.

    Raises:
        DatabaseError: Bad type/connection string, or the driver is not installed.
    """
    url = build_url(conf)

    kwargs: Dict[str, Any] = {}
    if url.get_backend_name() != "sqlite":
        if conf.max_open_conn:
            max_overflow = max(conf.max_open_conn - conf.max_idle_conn, 0)
        else:
            max_overflow = -1
        kwargs.update(
            pool_size=conf.max_idle_conn,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )
        recycle = _pool_recycle(conf)
        if recycle:
            kwargs["pool_recycle"] = recycle

    try:
        engine = create_async_engine(url, **kwargs)
    except (ArgumentError, ImportError, SQLAlchemyError) as exc:
        raise DatabaseError(
            f"database engine init fail: {exc}",
            context={"url": url.render_as_string(hide_password=True)},
        ) from exc

    _install_sql_logging(engine, conf)
    return engine


async def init_db(conf: DBConf) -> AsyncEngine:
    """
    Create the engine and verify the database is reachable.

    What:    create_engine() followed by SELECT 1 on a pooled connection.
    When:    Once at startup, after the logger and before the server starts.
    Raises:  DatabaseError if the engine cannot be built or the ping fails.
             The engine is disposed before raising.
    """
    engine = create_engine(conf)
    safe_url = engine.url.render_as_string(hide_password=True)

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        await engine.dispose()
        raise DatabaseError(
            f"database init fail: {exc}",
            context={"url": safe_url},
        ) from exc

    logger.info("Database connected: %s", safe_url)
    return engine


def async_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """
    Session factory bound to `engine`.

    expire_on_commit=False: attributes stay readable after commit without a
    new round-trip, which would fail outside the session context.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def bind_engine(app: FastAPI, engine: AsyncEngine) -> None:
    """Attach the engine and its session factory to the application state."""
    app.state.engine = engine
    app.state.session_factory = async_session_factory(engine)


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a session from the factory stored on app.state
        2. Yields it to the route handler
        3. On success: commits
        4. On error: rolls back and re-raises for the exception handlers
        5. Always: closes the session (returns the connection to the pool)

    Example:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db_session)):
            result = await db.execute(select(Item))
            return result.scalars().all()
    """
    factory = getattr(request.app.state, "session_factory", None)
    if factory is None:
        raise DatabaseError("database is not initialized")

    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def dispose_engine(engine: Optional[AsyncEngine]) -> None:
    """Close every pooled connection. Safe to call with None."""
    if engine is not None:
        await engine.dispose()
        logger.info("Database connections closed")
