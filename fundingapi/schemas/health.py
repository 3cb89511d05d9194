"""Pydantic models for health endpoints."""

from typing import Optional
from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Response model for service health checks."""

    status: str = "healthy"
    environment: Optional[str] = None
    confirmation_feed: Optional[str] = None
    price_provider: Optional[str] = None
