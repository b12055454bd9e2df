"""
Client for the remote inference service.

Features:
- One POST endpoint per query type, each with its own time budget
- Bearer authentication and an Idempotency-Key derived from the payload
- Identical concurrent requests share a single network call
- Client-side enforcement of the plan's request limits
- Classification of every failure into the engine's error taxonomy

Usage:
    async with InferenceGateway(settings) as gateway:
        data = await gateway.execute(QueryType.FTP, payload)
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings, get_settings
from ..exceptions import (
    ErrorCode,
    InferenceRequestError,
    InsufficientDataError,
    ModelUnavailableError,
    RateLimitedError,
    TransientError,
    UnauthorizedError,
    ValidationError,
)
from ..models.predictions import QueryType, payload_hash
from ..utils.log_sanitizer import sanitize_string
from .schemas import HealthStatus, ResponseEnvelope

logger = logging.getLogger(__name__)


class RateLimitTracker:
    """
    Sliding per-minute and per-day request windows for the athlete's plan.

    Exceeding either window raises RateLimitedError without touching the
    network.
    """

    def __init__(
        self,
        per_minute: int,
        per_day: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.per_minute = per_minute
        self.per_day = per_day
        self._clock = clock
        self._minute: Deque[float] = deque()
        self._day: Deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._minute and now - self._minute[0] >= 60:
            self._minute.popleft()
        while self._day and now - self._day[0] >= 86400:
            self._day.popleft()

    def check(self) -> None:
        """Raise if another request would exceed the plan."""
        now = self._clock()
        self._prune(now)
        if len(self._day) >= self.per_day:
            retry_after = int(86400 - (now - self._day[0])) + 1
            raise RateLimitedError(
                f"Daily request limit of {self.per_day} reached",
                retry_after=retry_after,
                local=True,
            )
        if len(self._minute) >= self.per_minute:
            retry_after = int(60 - (now - self._minute[0])) + 1
            raise RateLimitedError(
                f"Per-minute request limit of {self.per_minute} reached",
                retry_after=retry_after,
                local=True,
            )

    def record(self) -> None:
        now = self._clock()
        self._minute.append(now)
        self._day.append(now)

    @property
    def remaining_minute(self) -> int:
        self._prune(self._clock())
        return max(0, self.per_minute - len(self._minute))

    @property
    def remaining_day(self) -> int:
        self._prune(self._clock())
        return max(0, self.per_day - len(self._day))


class InferenceGateway:
    """Async gateway to the remote inference endpoints."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimitTracker] = None,
    ):
        self.settings = settings or get_settings()
        self.api_key = api_key if api_key is not None else self.settings.api_key
        self._http_client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None
        limits = self.settings.rate_limits
        self.rate_limiter = rate_limiter or RateLimitTracker(
            per_minute=limits["per_minute"],
            per_day=limits["per_day"],
        )
        self._in_flight: Dict[Tuple[QueryType, str], "asyncio.Task[Dict[str, Any]]"] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(base_url=self.settings.api_base_url)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._http_client is not None and not self._http_client.is_closed and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    async def __aenter__(self) -> "InferenceGateway":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self.settings.api_base_url.rstrip('/')}{path}"

    def _redact(self, text: str) -> str:
        return sanitize_string(text, secrets=[self.api_key])

    async def execute(self, query_type: QueryType, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a query and return the envelope's data.

        Concurrent calls with the same query type and payload share one
        request. Cancelling one caller does not cancel the shared request.

        Raises:
            TransientError: Timeout, network failure or 5xx (retryable).
            ModelUnavailableError: 503 / MODEL_UNAVAILABLE (retryable).
            RateLimitedError: 429 or local plan limit (retryable).
            ValidationError: 400.
            UnauthorizedError: 401 or no API key.
            InsufficientDataError: 422.
            InferenceRequestError: Any other 4xx.
        """
        key = (query_type, payload_hash(payload))
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._post(query_type, payload, key[1]))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug(f"Joining in-flight {query_type.value} request {key[1][:12]}")
        return await asyncio.shield(task)

    def _forget(self, key: Tuple[QueryType, str], task: "asyncio.Task[Dict[str, Any]]") -> None:
        self._in_flight.pop(key, None)
        # Mark the outcome as seen; callers that gave up no longer await it
        if not task.cancelled():
            task.exception()

    async def _post(self, query_type: QueryType, payload: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        if not self.api_key:
            raise UnauthorizedError("No API key configured for the inference service")

        self.rate_limiter.check()
        self.rate_limiter.record()

        timeout = getattr(self.settings, query_type.timeout_setting)
        client = await self._get_client()
        try:
            response = await client.post(
                self._url(query_type.endpoint),
                json=payload,
                headers=self._headers(idempotency_key),
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{query_type.value} request timed out after {timeout}s")
            raise TransientError(
                f"{query_type.value} request exceeded its {timeout}s budget",
                code=ErrorCode.TIMEOUT,
                status_code=504,
            ) from e
        except httpx.TransportError as e:
            reason = self._redact(str(e))
            logger.warning(f"{query_type.value} request failed: {reason}")
            raise TransientError(
                f"Network error calling {query_type.endpoint}: {reason}",
                code=ErrorCode.NETWORK_ERROR,
                status_code=503,
            ) from e

        data = self._handle_response(response)
        logger.debug(f"{query_type.value} request succeeded ({response.status_code})")
        return data if isinstance(data, dict) else {"result": data}

    async def health(self) -> HealthStatus:
        """GET /health. Not counted against the plan's request limits."""
        client = await self._get_client()
        try:
            response = await client.get(
                self._url("/health"),
                headers=self._headers(),
                timeout=self.settings.health_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise TransientError("Health check timed out", code=ErrorCode.TIMEOUT, status_code=504) from e
        except httpx.TransportError as e:
            raise TransientError(
                f"Network error during health check: {self._redact(str(e))}",
                code=ErrorCode.NETWORK_ERROR,
                status_code=503,
            ) from e

        data = self._handle_response(response)
        return HealthStatus.model_validate(data or {})

    def _handle_response(self, response: httpx.Response) -> Any:
        """Unwrap the envelope or raise the classified error."""
        envelope: Optional[ResponseEnvelope] = None
        try:
            envelope = ResponseEnvelope.model_validate(response.json())
        except (ValueError, PydanticValidationError):
            envelope = None

        if 200 <= response.status_code < 300:
            if envelope is None:
                raise TransientError(
                    "Malformed response from inference service",
                    status_code=response.status_code,
                )
            if envelope.success:
                return envelope.data

        code = ErrorCode.from_wire(envelope.error.code) if envelope and envelope.error else None
        message = (
            envelope.error.message if envelope and envelope.error and envelope.error.message
            else response.text or f"HTTP {response.status_code}"
        )
        raise self._classify(response, code, self._redact(message))

    def _classify(self, response: httpx.Response, code: Optional[ErrorCode], message: str) -> Exception:
        status = response.status_code

        if status == 503 or code == ErrorCode.MODEL_UNAVAILABLE:
            return ModelUnavailableError(message)
        if status == 429 or code == ErrorCode.RATE_LIMITED:
            retry_after = response.headers.get("Retry-After")
            logger.warning(f"Inference service rate limited this client (retry after {retry_after})")
            return RateLimitedError(message, retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None)
        if status == 401 or code == ErrorCode.UNAUTHORIZED:
            return UnauthorizedError(message)
        if status == 400 or code == ErrorCode.INVALID_REQUEST:
            return ValidationError(message)
        if status == 422 or code == ErrorCode.INSUFFICIENT_DATA:
            return InsufficientDataError(message)
        # Unknown wire codes map to SERVER_ERROR; only trust that for non-4xx statuses
        if status >= 500 or (code == ErrorCode.SERVER_ERROR and status < 400):
            return TransientError(message, status_code=status if status >= 500 else 500)
        return InferenceRequestError(message, status_code=status)
