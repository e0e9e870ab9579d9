"""
webkit - API Routes Package
=============================

What:  Route registration entry point.

Route Inventory:
    - health.py:  GET /health   (service + database status)
                  GET /ping     (liveness, no dependencies)

Applications built on this template add their own routers in init_router().
Routes stay thin: extract input, call a service, shape the response.
"""

from fastapi import FastAPI

from webkit.routes import health


def init_router(app: FastAPI) -> None:
    """Mount every router on `app`."""
    app.include_router(health.router)
