"""
Pydantic schemas for HTTP responses.

Webhook request payloads are modelled in events.py, since their shape
depends on the event being delivered.
"""

from typing import Optional

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    """Response model for successful webhook processing."""
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
