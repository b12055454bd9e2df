"""Retry schedule and retryability classification for remote inference calls.

Failed requests are not retried inline. They go to the offline queue and
are replayed on a fixed, capped schedule:

    attempt 1 -> 30s after enqueue
    attempt 2 -> 60s after the previous attempt
    attempt 3 -> 120s
    attempt 4+ -> 300s (cap)

Usage:
    from ride_insights.tools.retry import BackoffSchedule, is_retryable

    schedule = BackoffSchedule([30, 60, 120, 300])
    if is_retryable(error):
        next_at = last_attempt + timedelta(seconds=schedule.delay_for(attempt))
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional, Sequence, Tuple, Type

import httpx

from ..exceptions import RideInsightsError

logger = logging.getLogger(__name__)


# ============================================================================
# Exception Classifications
# ============================================================================

# Exceptions that should be retried (transient failures)
RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.TransportError,
    sqlite3.OperationalError,  # Database locked, disk I/O error, etc.
    ConnectionError,
    TimeoutError,
)

# Exceptions that should NOT be retried (permanent failures)
NON_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ValueError,
    TypeError,
    KeyError,
    sqlite3.ProgrammingError,
    sqlite3.IntegrityError,
    AttributeError,
)


def is_retryable(exception: BaseException) -> bool:
    """Determine if a failed request may be queued for another attempt.

    Errors from the inference taxonomy carry their own verdict. Anything else
    is classified by type; unknown exceptions are not retried.
    """
    if isinstance(exception, RideInsightsError):
        return exception.retryable
    if isinstance(exception, NON_RETRYABLE_EXCEPTIONS):
        return False
    if isinstance(exception, RETRYABLE_EXCEPTIONS):
        return True
    return False


# ============================================================================
# Backoff Schedule
# ============================================================================


class BackoffSchedule:
    """Fixed retry delays; the last step repeats once the schedule runs out."""

    def __init__(self, steps: Sequence[float] = (30, 60, 120, 300)):
        if not steps:
            raise ValueError("Backoff schedule needs at least one step")
        self.steps: Tuple[float, ...] = tuple(float(s) for s in steps)

    @property
    def cap(self) -> float:
        return self.steps[-1]

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based: 0 is the first retry)."""
        if attempt < 0:
            attempt = 0
        return self.steps[min(attempt, len(self.steps) - 1)]

    def next_time(self, after: datetime, attempt: int) -> datetime:
        return after + timedelta(seconds=self.delay_for(attempt))

    def __repr__(self) -> str:
        return f"BackoffSchedule({list(self.steps)})"


# ============================================================================
# Retry Metrics
# ============================================================================


@dataclass
class RetryMetrics:
    """Counts of remote attempts per query type, for logging and debugging."""

    query_type: str
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    last_error: Optional[str] = None
    errors_by_type: Dict[str, int] = field(default_factory=dict)

    def record_attempt(self, success: bool, error: Optional[BaseException] = None) -> None:
        self.total_attempts += 1
        if success:
            self.successful_attempts += 1
            return
        self.failed_attempts += 1
        if error is not None:
            self.last_error = str(error)
            error_type = type(error).__name__
            self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1

    def to_dict(self) -> dict:
        return {
            "query_type": self.query_type,
            "total_attempts": self.total_attempts,
            "successful_attempts": self.successful_attempts,
            "failed_attempts": self.failed_attempts,
            "last_error": self.last_error,
            "errors_by_type": dict(self.errors_by_type),
        }
