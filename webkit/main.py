"""
webkit - Application Factory and Process Entry
================================================

What:  Builds the FastAPI application and runs the process startup sequence.
Who:   `python -m webkit [--config FILE]` → main()

Application Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                    FastAPI App                       │
    │                                                      │
    │  Middleware Chain:                                   │
    │  ┌──────────────┐ ┌─────────────────┐                │
    │  │  Request ID  │→│  Access Logging │→ route         │
    │  └──────────────┘ └─────────────────┘                │
    │                                                      │
    │  Routes:  GET /health   GET /ping                    │
    │                                                      │
    │  Exception Handlers:                                 │
    │  Validation→400 │ NotFound→404 │ CallApi→502 │ *→500 │
    └──────────────────────────────────────────────────────┘

Startup Sequence (main):
    1. Config      init_by_file(--config) or init_by_env()
    2. Logger      init_logger(config.logger)
    3. App         create_app(config): middleware, handlers, routes
    4. Database    init_db(config.db), attached to app.state
    5. Validator   init_validator(app)
    6. Server      run(): listen, wait for SIGINT/SIGTERM, drain (30s max)

    Steps 1-5 are fatal on failure; so is a failed bind or an expired
    shutdown deadline. A clean shutdown exits with status 0.
"""

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from webkit import __version__
from webkit.config import Config, init_by_env, init_by_file
from webkit.database import bind_engine, dispose_engine, init_db
from webkit.exceptions import (
    CallApiError,
    ConfigError,
    DatabaseError,
    NotFoundError,
    ValidationError,
    WebkitError,
)
from webkit.logger import fatal, init_logger, sync
from webkit.middleware.logging import RequestLoggingMiddleware
from webkit.middleware.request_id import RequestIDMiddleware, request_id_var
from webkit.routes import init_router
from webkit.server import run
from webkit.validator import init_validator

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup/shutdown hooks run by uvicorn.

    Shutdown runs after in-flight requests have drained and closes the
    database pool.
    """
    logger.info("webkit %s starting up", __version__)

    yield

    logger.info("webkit shutting down...")
    await dispose_engine(getattr(app.state, "engine", None))
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, **extra: Any) -> Dict[str, Any]:
    return {"error": error, "message": message, **extra, "request_id": request_id_var.get("")}


# Exception type → (status, error code, public message).
# A public message of None means exc.message is safe to return as-is.
# Lookup walks the MRO, so subclasses (e.g. ResponseDecodeError) inherit
# their parent's mapping.
_ERROR_MAP: Dict[Type[WebkitError], Tuple[int, str, Optional[str]]] = {
    ValidationError: (400, "validation_error", None),
    NotFoundError: (404, "not_found", None),
    CallApiError: (502, "upstream_error", "An upstream service returned an error."),
    DatabaseError: (500, "server_error", "An internal error occurred. Please try again later."),
    WebkitError: (500, "server_error", None),
}


async def handle_webkit_error(request: Request, exc: WebkitError) -> JSONResponse:
    for cls in type(exc).__mro__:
        if cls in _ERROR_MAP:
            status, error, public_message = _ERROR_MAP[cls]
            break

    if status >= 500:
        logger.error("%s: %s | Context: %s", type(exc).__name__, exc.message, exc.context)
    else:
        logger.warning("%s: %s", type(exc).__name__, exc.message)

    extra = {"details": exc.context} if isinstance(exc, ValidationError) else {}
    return JSONResponse(
        status_code=status,
        content=_error_body(error, public_message or exc.message, **extra),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Recovery: a crashing handler costs one 500, never the process."""
    logger.error("Recovered from unexpected error: %s", exc, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP responses.

    Handler hierarchy:
        ValidationError  → 400 Bad Request
        NotFoundError    → 404 Not Found
        CallApiError     → 502 Bad Gateway (upstream answered badly)
        DatabaseError    → 500, generic message
        WebkitError      → 500
        Exception        → 500, traceback logged (panic recovery)

    Internal details (tracebacks, connection strings, upstream bodies) are
    logged server-side and never returned to the client.
    """
    app.add_exception_handler(WebkitError, handle_webkit_error)
    app.add_exception_handler(Exception, handle_unexpected_error)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(config: Config, engine: Optional[AsyncEngine] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config:  The loaded configuration; stored on app.state.config.
        engine:  Optional database engine. main() attaches it later, once
                 init_db() has succeeded inside the server's event loop.
    """
    app = FastAPI(
        title="webkit",
        description="Web service bootstrap template",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.engine = None
    if engine is not None:
        bind_engine(app, engine)

    # Middleware executes in REVERSE order of addition:
    # RequestID runs first so the access log line carries the ID
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)
    init_router(app)

    return app


# ══════════════════════════════════════════════════════════════════════════
# Process Entry
# ══════════════════════════════════════════════════════════════════════════

def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="webkit", description="Run the webkit HTTP service.")
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="YAML, JSON or TOML config file. Without it, settings come from "
        "environment variables (SERVER_PORT, DB_TYPE, DB_CONN, DB_LOG_LEVEL, LOG_LEVEL).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Run the startup sequence and serve until a termination signal."""
    args = _parse_args(argv)

    try:
        config = init_by_file(args.config) if args.config else init_by_env()
    except ConfigError as exc:
        fatal("%s", exc.message)

    init_logger(config.logger)

    app = create_app(config)

    # DatabaseError / ValidatorError raised here reach run(), which exits fatally
    async def startup() -> None:
        engine = await init_db(config.db)
        bind_engine(app, engine)
        init_validator(app)

    try:
        run(app, config.server, before_serve=startup)
    finally:
        sync()
