"""
webkit - Health Check Routes
==============================

What:  Probes for load balancers, orchestrators and monitoring.
How:   /health runs SELECT 1 against the engine stored on app.state;
       /ping answers without touching any dependency.

Status levels:
    healthy    database reachable (or none configured)  → HTTP 200
    unhealthy  database unreachable                     → HTTP 503
"""

import logging
import time

from fastapi import APIRouter, Request, Response
from sqlalchemy import text

from webkit import __version__
from webkit.schemas.health import HealthResponse, PingResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    responses={503: {"model": HealthResponse}},
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    """
    Check the service and its database.

    The database probe is a single SELECT 1 on a pooled connection, cheap
    enough for probes every few seconds.
    """
    db_status = "not_configured"
    overall = "healthy"

    engine = getattr(request.app.state, "engine", None)
    if engine is not None:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            db_status = "connected"
        except Exception as e:
            db_status = "disconnected"
            overall = "unhealthy"
            logger.warning("Health check: database unreachable: %s", str(e))

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )


@router.get("/ping", response_model=PingResponse, summary="Liveness probe")
async def ping() -> PingResponse:
    return PingResponse()
