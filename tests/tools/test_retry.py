"""Tests for the retry schedule and retryability classification."""

import sqlite3
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from ride_insights.exceptions import ModelUnavailableError, ValidationError
from ride_insights.tools.retry import BackoffSchedule, RetryMetrics, is_retryable


class TestIsRetryable:

    def test_taxonomy_errors_carry_their_verdict(self):
        assert is_retryable(ModelUnavailableError())
        assert not is_retryable(ValidationError("bad"))

    @pytest.mark.parametrize(
        "exception",
        [
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            sqlite3.OperationalError("database is locked"),
            ConnectionError(),
            TimeoutError(),
        ],
    )
    def test_transient_exceptions(self, exception):
        assert is_retryable(exception)

    @pytest.mark.parametrize(
        "exception",
        [ValueError(), KeyError("x"), sqlite3.IntegrityError(), RuntimeError("unknown")],
    )
    def test_permanent_and_unknown_exceptions(self, exception):
        assert not is_retryable(exception)


class TestBackoffSchedule:

    def test_delays_cap_at_last_step(self):
        schedule = BackoffSchedule()

        assert [schedule.delay_for(n) for n in range(6)] == [30, 60, 120, 300, 300, 300]
        assert schedule.cap == 300

    def test_negative_attempt_uses_first_step(self):
        assert BackoffSchedule([5, 10]).delay_for(-1) == 5

    def test_next_time(self):
        start = datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert BackoffSchedule().next_time(start, 2) == start + timedelta(seconds=120)

    def test_empty_schedule_rejected(self):
        with pytest.raises(ValueError):
            BackoffSchedule([])


class TestRetryMetrics:

    def test_counts_by_error_type(self):
        metrics = RetryMetrics(query_type="ftp")
        metrics.record_attempt(success=False, error=ModelUnavailableError())
        metrics.record_attempt(success=False, error=ModelUnavailableError("still down"))
        metrics.record_attempt(success=True)

        assert metrics.to_dict() == {
            "query_type": "ftp",
            "total_attempts": 3,
            "successful_attempts": 1,
            "failed_attempts": 2,
            "last_error": "still down",
            "errors_by_type": {"ModelUnavailableError": 2},
        }
