"""Tests for the inference service gateway."""

import asyncio
import json

import httpx
import pytest

from ride_insights.exceptions import (
    ErrorCode,
    InferenceRequestError,
    InsufficientDataError,
    ModelUnavailableError,
    RateLimitedError,
    TransientError,
    UnauthorizedError,
    ValidationError,
)
from ride_insights.integrations.inference import InferenceGateway, RateLimitTracker
from ride_insights.models.predictions import QueryType, payload_hash


PAYLOAD = {"athlete_id": "athlete-1", "rides": [{"ride_id": "r1"}]}


def envelope(data=None, error=None, success=True):
    body = {"success": success, "data": data, "timestamp": "2024-06-30T12:00:00Z"}
    if error:
        body["error"] = error
        body["success"] = False
    return body


def make_gateway(settings, handler, rate_limiter=None, api_key=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return InferenceGateway(settings, api_key=api_key, client=client, rate_limiter=rate_limiter)


class TestExecute:

    @pytest.mark.asyncio
    async def test_successful_request(self, settings):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=envelope({"predicted_ftp": 255}))

        gateway = make_gateway(settings, handler)
        data = await gateway.execute(QueryType.FTP, PAYLOAD)

        assert data == {"predicted_ftp": 255}
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/predictions/ftp"
        assert request.headers["Authorization"] == "Bearer test-key"
        assert request.headers["Idempotency-Key"] == payload_hash(PAYLOAD)
        assert json.loads(request.content) == PAYLOAD

    @pytest.mark.asyncio
    async def test_per_endpoint_timeout(self, settings):
        timeouts = []

        def handler(request):
            timeouts.append(request.extensions["timeout"]["read"])
            return httpx.Response(200, json=envelope({}))

        gateway = make_gateway(settings, handler)
        await gateway.execute(QueryType.FATIGUE, PAYLOAD)
        await gateway.execute(QueryType.RECOMMENDATIONS, PAYLOAD)

        assert timeouts == [2.0, 3.0]

    @pytest.mark.asyncio
    async def test_non_object_data_wrapped(self, settings):
        gateway = make_gateway(settings, lambda r: httpx.Response(200, json=envelope([1, 2, 3])))
        assert await gateway.execute(QueryType.CADENCE, PAYLOAD) == {"result": [1, 2, 3]}

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        from ride_insights.config import Settings

        calls = []
        gateway = make_gateway(Settings(api_key=""), lambda r: calls.append(r))

        with pytest.raises(UnauthorizedError):
            await gateway.execute(QueryType.FTP, PAYLOAD)
        assert calls == []


class TestErrorClassification:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,code,expected,retryable", [
        (400, "INVALID_REQUEST", ValidationError, False),
        (401, "UNAUTHORIZED", UnauthorizedError, False),
        (422, "INSUFFICIENT_DATA", InsufficientDataError, False),
        (429, "RATE_LIMITED", RateLimitedError, True),
        (500, "SERVER_ERROR", TransientError, True),
        (503, "MODEL_UNAVAILABLE", ModelUnavailableError, True),
        (404, "NOT_FOUND", InferenceRequestError, False),
    ])
    async def test_status_codes(self, settings, status, code, expected, retryable):
        def handler(request):
            return httpx.Response(status, json=envelope(error={"code": code, "message": "nope"}))

        gateway = make_gateway(settings, handler)
        with pytest.raises(expected) as exc_info:
            await gateway.execute(QueryType.FTP, PAYLOAD)

        assert exc_info.value.retryable is retryable
        assert exc_info.value.message == "nope"

    @pytest.mark.asyncio
    async def test_retry_after_header(self, settings):
        def handler(request):
            return httpx.Response(
                429,
                headers={"Retry-After": "120"},
                json=envelope(error={"code": "RATE_LIMITED", "message": "slow down"}),
            )

        gateway = make_gateway(settings, handler)
        with pytest.raises(RateLimitedError) as exc_info:
            await gateway.execute(QueryType.FTP, PAYLOAD)

        assert exc_info.value.retry_after == 120
        assert exc_info.value.local is False

    @pytest.mark.asyncio
    async def test_error_envelope_with_ok_status(self, settings):
        def handler(request):
            return httpx.Response(200, json=envelope(error={"code": "MODEL_UNAVAILABLE", "message": "loading"}))

        gateway = make_gateway(settings, handler)
        with pytest.raises(ModelUnavailableError):
            await gateway.execute(QueryType.FTP, PAYLOAD)

    @pytest.mark.asyncio
    async def test_malformed_body_is_transient(self, settings):
        gateway = make_gateway(settings, lambda r: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(TransientError):
            await gateway.execute(QueryType.FTP, PAYLOAD)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, settings):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        gateway = make_gateway(settings, handler)
        with pytest.raises(TransientError) as exc_info:
            await gateway.execute(QueryType.FATIGUE, PAYLOAD)

        assert exc_info.value.code == ErrorCode.TIMEOUT
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(settings, handler)
        with pytest.raises(TransientError) as exc_info:
            await gateway.execute(QueryType.FTP, PAYLOAD)

        assert exc_info.value.code == ErrorCode.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_api_key_redacted_from_network_error(self, settings):
        def handler(request):
            raise httpx.ConnectError("proxy rejected Authorization: Bearer test-key", request=request)

        gateway = make_gateway(settings, handler)
        with pytest.raises(TransientError) as exc_info:
            await gateway.execute(QueryType.FTP, PAYLOAD)

        assert "test-key" not in exc_info.value.message
        assert exc_info.value.message.endswith("Bearer [REDACTED_API_KEY]")

    @pytest.mark.asyncio
    async def test_api_key_redacted_from_echoed_error(self, settings):
        def handler(request):
            return httpx.Response(404, text="no route for key test-key")

        gateway = make_gateway(settings, handler)
        with pytest.raises(InferenceRequestError) as exc_info:
            await gateway.execute(QueryType.FTP, PAYLOAD)

        assert exc_info.value.message == "no route for key [REDACTED_API_KEY]"


class TestInFlightDeduplication:

    @pytest.mark.asyncio
    async def test_identical_requests_share_one_call(self, settings):
        calls = []

        async def handler(request):
            calls.append(request)
            await asyncio.sleep(0.01)
            return httpx.Response(200, json=envelope({"ok": True}))

        gateway = make_gateway(settings, handler)
        first, second = await asyncio.gather(
            gateway.execute(QueryType.FTP, PAYLOAD),
            gateway.execute(QueryType.FTP, dict(reversed(list(PAYLOAD.items())))),
        )

        assert first == second == {"ok": True}
        assert len(calls) == 1
        assert gateway.in_flight == 0

    @pytest.mark.asyncio
    async def test_different_payloads_not_shared(self, settings):
        calls = []

        async def handler(request):
            calls.append(request)
            await asyncio.sleep(0.01)
            return httpx.Response(200, json=envelope({}))

        gateway = make_gateway(settings, handler)
        await asyncio.gather(
            gateway.execute(QueryType.FTP, PAYLOAD),
            gateway.execute(QueryType.FTP, {**PAYLOAD, "current_ftp": 250}),
        )

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_call(self, settings):
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(request):
            started.set()
            await release.wait()
            return httpx.Response(200, json=envelope({"ok": True}))

        gateway = make_gateway(settings, handler)
        abandoned = asyncio.ensure_future(gateway.execute(QueryType.FATIGUE, PAYLOAD))
        waiting = asyncio.ensure_future(gateway.execute(QueryType.FATIGUE, PAYLOAD))
        await started.wait()

        abandoned.cancel()
        release.set()

        assert await waiting == {"ok": True}
        assert abandoned.cancelled()


class TestRateLimits:

    def test_tracker_minute_window(self):
        now = [0.0]
        tracker = RateLimitTracker(per_minute=2, per_day=50, clock=lambda: now[0])
        tracker.record()
        tracker.record()

        with pytest.raises(RateLimitedError) as exc_info:
            tracker.check()
        assert exc_info.value.local is True
        assert exc_info.value.retry_after == 61

        now[0] = 60.0
        tracker.check()
        assert tracker.remaining_minute == 2

    def test_tracker_daily_window(self):
        now = [0.0]
        tracker = RateLimitTracker(per_minute=100, per_day=3, clock=lambda: now[0])
        for i in range(3):
            now[0] = i * 120.0
            tracker.record()

        now[0] = 3600.0
        with pytest.raises(RateLimitedError):
            tracker.check()
        assert tracker.remaining_day == 0

    def test_plan_limits_from_settings(self, settings):
        gateway = InferenceGateway(settings)
        assert gateway.rate_limiter.per_day == 50
        assert gateway.rate_limiter.per_minute == 10

    @pytest.mark.asyncio
    async def test_local_limit_blocks_without_calling_out(self, settings):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=envelope({}))

        tracker = RateLimitTracker(per_minute=2, per_day=50, clock=lambda: 0.0)
        gateway = make_gateway(settings, handler, rate_limiter=tracker)
        await gateway.execute(QueryType.FTP, {"n": 1})
        await gateway.execute(QueryType.FTP, {"n": 2})

        with pytest.raises(RateLimitedError):
            await gateway.execute(QueryType.FTP, {"n": 3})
        assert len(calls) == 2


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_not_rate_limited(self, settings):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/v1/health"
            return httpx.Response(200, json=envelope({"status": "ok", "version": "1.4.0"}))

        tracker = RateLimitTracker(per_minute=1, per_day=1, clock=lambda: 0.0)
        gateway = make_gateway(settings, handler, rate_limiter=tracker)
        status = await gateway.health()

        assert status.is_healthy
        assert status.version == "1.4.0"
        assert tracker.remaining_day == 1

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self, settings):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with InferenceGateway(settings, client=client):
            pass

        assert not client.is_closed
        await client.aclose()
