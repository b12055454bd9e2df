"""Remote inference service integration."""

from .inference import InferenceGateway, RateLimitTracker
from .schemas import HealthStatus, ResponseEnvelope, WireError

__all__ = [
    "InferenceGateway",
    "RateLimitTracker",
    "HealthStatus",
    "ResponseEnvelope",
    "WireError",
]
