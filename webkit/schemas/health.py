"""
webkit - Health and Ping Schemas
==================================

What:  Response models for the built-in operational routes.
Why:   FastAPI serializes and documents responses from these models.
"""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """
    Service health as reported by GET /health.

    status:
        healthy    every dependency answered
        unhealthy  the database check failed (HTTP 503)
    database:
        connected | disconnected | not_configured
    """

    status: str = Field(description="Overall status: healthy or unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity")
    uptime_seconds: float = Field(description="Seconds since the process started")


class PingResponse(BaseModel):
    message: str = Field(default="pong")
