"""
Pydantic models for requests and JSON responses.
"""
from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, Field


# -----------------------------------------------------------------------------
# REQUEST MODELS
# -----------------------------------------------------------------------------

class ThumbnailRequest(BaseModel):
    """A validated thumbnail request."""
    source_id: str = Field(..., min_length=1, description="URL-decoded source identifier")
    width: int = Field(..., gt=0, description="Maximum thumbnail width in pixels")
    height: Optional[int] = Field(None, gt=0, description="Maximum thumbnail height; None derives it from aspect ratio")


# -----------------------------------------------------------------------------
# RESPONSE MODELS
# -----------------------------------------------------------------------------

class ErrorResponse(BaseModel):
    """Error body returned for 4xx/5xx responses."""
    error: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="ok or degraded")
    version: str
    store_backend: str
    store_status: str
    source_backend: str
    pending_writes: int = 0


class RootResponse(BaseModel):
    """Root endpoint response."""
    message: str
    version: str
    docs: str
    health: str
