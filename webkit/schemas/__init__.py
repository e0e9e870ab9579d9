"""webkit - Pydantic response schemas for the built-in routes."""
