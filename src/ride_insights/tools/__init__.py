"""Retry helpers for remote calls."""

from .retry import BackoffSchedule, RetryMetrics, is_retryable

__all__ = ["BackoffSchedule", "RetryMetrics", "is_retryable"]
