"""Wire schemas for the remote inference service."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class WireError(BaseModel):
    """Error object inside a failed response envelope."""

    code: str = Field(..., description="Wire error code, e.g. RATE_LIMITED")
    message: str = ""


class ResponseEnvelope(BaseModel):
    """Every response body: {success, data, error, timestamp}."""

    success: bool
    data: Optional[Any] = None
    error: Optional[WireError] = None
    timestamp: Optional[datetime] = None


class HealthStatus(BaseModel):
    """Body of GET /health."""

    status: str = "unknown"
    version: Optional[str] = None
    models: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status.lower() in ("ok", "healthy")
