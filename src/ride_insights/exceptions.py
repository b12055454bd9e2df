"""
Custom exceptions for the ride insights engine.

Every error carries:
- A descriptive message
- An error code matching the inference service's wire taxonomy
- The HTTP status code that produces it over the wire
- Whether the delivery layer may retry it
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Error codes shared with the remote inference service."""

    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"

    # Client-side only
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    REQUEST_REJECTED = "REQUEST_REJECTED"

    @classmethod
    def from_wire(cls, code: Optional[str]) -> "ErrorCode":
        """Map an error code string from a response envelope."""
        try:
            return cls(code or "")
        except ValueError:
            return cls.SERVER_ERROR


class RideInsightsError(Exception):
    """
    Base exception for all ride insights errors.

    Attributes:
        message: Human-readable error message
        code: Error code from ErrorCode enum
        status_code: HTTP status code associated with the error
        details: Optional dictionary with additional error details
        retryable: Whether the offline queue may retry the request
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SERVER_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary, shaped like the wire error object."""
        result: Dict[str, Any] = {
            "error": {
                "code": self.code.value,
                "message": self.message,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"


# ============================================================================
# Local / non-retryable errors
# ============================================================================

class ValidationError(RideInsightsError):
    """Raised when input is structurally invalid. Never sent over the wire."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_REQUEST,
            status_code=400,
            details=error_details,
        )


class InsufficientDataError(RideInsightsError):
    """Raised when there is not enough qualifying history for a judgment."""

    def __init__(
        self,
        message: str,
        guidance: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.guidance = guidance
        error_details = details or {}
        if guidance:
            error_details["guidance"] = guidance
        super().__init__(
            message=message,
            code=ErrorCode.INSUFFICIENT_DATA,
            status_code=422,
            details=error_details,
        )


class UnauthorizedError(RideInsightsError):
    """Raised when the API key is rejected. Fatal for the athlete session."""

    def __init__(self, message: str = "API key rejected by the inference service") -> None:
        super().__init__(
            message=message,
            code=ErrorCode.UNAUTHORIZED,
            status_code=401,
        )


class InferenceRequestError(RideInsightsError):
    """Raised for any other client error the service returns (4xx)."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            code=ErrorCode.REQUEST_REJECTED,
            status_code=status_code,
            details=details,
        )


# ============================================================================
# Retryable errors
# ============================================================================

class TransientError(RideInsightsError):
    """Raised for timeouts, network failures and 5xx responses."""

    retryable = True

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SERVER_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            code=code,
            status_code=status_code,
            details=details,
        )


class ModelUnavailableError(TransientError):
    """Raised when the remote model is not loaded (503). Treated as transient."""

    def __init__(self, message: str = "Inference model is temporarily unavailable") -> None:
        super().__init__(
            message=message,
            code=ErrorCode.MODEL_UNAVAILABLE,
            status_code=503,
        )


class RateLimitedError(RideInsightsError):
    """Raised when the plan's request budget is exhausted."""

    retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        local: bool = False,
    ) -> None:
        self.retry_after = retry_after
        self.local = local
        details: Dict[str, Any] = {"local": local}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(
            message=message,
            code=ErrorCode.RATE_LIMITED,
            status_code=429,
            details=details,
        )
