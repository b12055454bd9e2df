"""
Per-athlete session binding the analyzers to the inference service.

Every read goes through AthleteSession.request, which always returns a
tagged PredictionResult:

    live        answer from the inference service, now cached
    cached      last live answer, returned while the service is unreachable
    local       computed on-device by the matching analyzer
    unavailable nothing to show

Retryable failures are queued and replayed by a background job on the
offline schedule. A RATE_LIMITED answer puts the whole session into a
back-off window on that same schedule. UNAUTHORIZED ends remote access
for the session.

Usage:
    async with AthleteSession("athlete-1", settings) as session:
        session.start()
        result = await session.predict_ftp(rides, current_ftp=250)
        if result.is_stale:
            show_age(result.computed_at)
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..analysis.cadence import CadenceAnalyzer
from ..analysis.fatigue import FatigueAnalyzer, FatigueMonitor, FatigueState
from ..analysis.forecast import CTLForecaster, TargetEvent
from ..analysis.ftp import FTPMethod, FTPPredictor, parse_method
from ..config import Settings, get_settings
from ..db.prediction_cache_repository import PredictionCacheRepository
from ..exceptions import (
    ErrorCode,
    RateLimitedError,
    RideInsightsError,
    UnauthorizedError,
    ValidationError,
)
from ..integrations.inference import InferenceGateway
from ..models.athlete import AthleteBaseline, TrainingGoal
from ..models.predictions import PredictionResult, PredictionSource, QueryType, utcnow
from ..models.ride import (
    CTLPoint,
    RideSample,
    RideSummary,
    samples_to_payload,
    validate_ctl_series,
    validate_samples,
)
from ..models.workouts import CandidateWorkout, EnergySystem
from ..recommendations.workout import WorkoutRecommender
from ..tools.retry import RetryMetrics, is_retryable
from .offline import OfflineQueue, PredictionCache, age_description

logger = logging.getLogger(__name__)

Fallback = Callable[[], Optional[Dict[str, Any]]]


class AthleteSession:
    """Analyzers, gateway, queue and cache for one athlete."""

    def __init__(
        self,
        athlete_id: str,
        settings: Optional[Settings] = None,
        gateway: Optional[InferenceGateway] = None,
        cache: Optional[PredictionCache] = None,
        queue: Optional[OfflineQueue] = None,
        baseline: Optional[AthleteBaseline] = None,
    ):
        self.athlete_id = athlete_id
        self.settings = settings or get_settings()
        self.gateway = gateway or InferenceGateway(self.settings)

        if cache is None:
            repository = None
            if self.settings.cache_db_path:
                repository = PredictionCacheRepository(self.settings.cache_db_path)
            cache = PredictionCache(repository)
        self.cache = cache
        self.queue = queue or OfflineQueue(
            max_size=self.settings.queue_max_size,
            schedule=self.settings.retry_schedule_seconds,
        )

        self.ftp_predictor = FTPPredictor(self.settings)
        self.fatigue_monitor = FatigueMonitor(FatigueAnalyzer(baseline, self.settings))
        self.recommender = WorkoutRecommender(self.settings)
        self.forecaster = CTLForecaster(self.settings)
        self.cadence_analyzer = CadenceAnalyzer()

        self.retry_metrics: Dict[QueryType, RetryMetrics] = {
            qt: RetryMetrics(query_type=qt.value) for qt in QueryType
        }
        self._unauthorized = False
        self._backoff_until: Optional[datetime] = None
        self._backoff_attempt = 0
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "AthleteSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def remote_enabled(self) -> bool:
        return not self._unauthorized and not self._closed

    def start(self, interval_seconds: Optional[float] = None) -> None:
        """Start the background job that replays due queued requests.

        Must be called from inside a running event loop.
        """
        if self._scheduler is not None:
            logger.warning(f"Retry job for athlete {self.athlete_id} is already running")
            return

        interval = interval_seconds or self.settings.retry_poll_seconds
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.process_due_retries,
            IntervalTrigger(seconds=interval),
            id=f"offline_retries_{self.athlete_id}",
            name="Offline queue retries",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Retry job started for athlete {self.athlete_id} (every {interval}s)")

    async def close(self) -> None:
        """Stop the retry job, drop pending retries and close the gateway."""
        if self._closed:
            return
        self._closed = True
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        dropped = self.queue.clear()
        if dropped:
            logger.info(f"Session for athlete {self.athlete_id} closed with {dropped} unsent requests")
        await self.gateway.close()

    # ------------------------------------------------------------------
    # Core request path
    # ------------------------------------------------------------------

    def in_backoff(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self._backoff_until is not None and now < self._backoff_until

    @property
    def backoff_until(self) -> Optional[datetime]:
        return self._backoff_until

    def _ensure_remote_allowed(self) -> None:
        if self._closed:
            raise RideInsightsError("Session is closed", code=ErrorCode.REQUEST_REJECTED, status_code=400)
        if self._unauthorized:
            raise UnauthorizedError("Inference access ended for this session after an authorization failure")

    async def request(
        self,
        query_type: QueryType,
        payload: Dict[str, Any],
        fallback: Optional[Fallback] = None,
        prefer_fallback: bool = False,
        now: Optional[datetime] = None,
    ) -> PredictionResult:
        """
        Ask the inference service, degrading to cache or local fallback.

        Non-retryable errors (validation, insufficient data, rejected
        requests, authorization) propagate to the caller. Retryable errors
        queue the request and return a degraded result.

        Args:
            query_type: Which endpoint to call
            payload: JSON body for the endpoint
            fallback: Local computation used when no cached answer exists
            prefer_fallback: Try the fallback before the cache
        """
        self._ensure_remote_allowed()
        now = now or utcnow()

        if self.in_backoff(now):
            self.queue.enqueue(query_type, payload, now=now, rate_limited=True, not_before=self._backoff_until)
            logger.info(
                f"{query_type.value} request queued: rate-limit back-off until "
                f"{self._backoff_until.isoformat()}"
            )
            return self._degraded(query_type, ErrorCode.RATE_LIMITED.value, fallback, prefer_fallback, now)

        try:
            data = await self._call(query_type, payload, now)
        except RideInsightsError as e:
            if not is_retryable(e):
                raise
            rate_limited = isinstance(e, RateLimitedError)
            self.queue.enqueue(
                query_type,
                payload,
                now=now,
                rate_limited=rate_limited,
                not_before=self._backoff_until if rate_limited else None,
            )
            return self._degraded(query_type, e.code.value, fallback, prefer_fallback, now)

        return self._apply_live(query_type, payload, data)

    async def _call(self, query_type: QueryType, payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        metrics = self.retry_metrics[query_type]
        try:
            data = await self.gateway.execute(query_type, payload)
        except UnauthorizedError as e:
            metrics.record_attempt(success=False, error=e)
            self._unauthorized = True
            logger.error(f"Inference service rejected the API key for athlete {self.athlete_id}; remote access ended")
            raise
        except RateLimitedError as e:
            metrics.record_attempt(success=False, error=e)
            self._enter_backoff(e, now)
            raise
        except RideInsightsError as e:
            metrics.record_attempt(success=False, error=e)
            if e.retryable:
                logger.info(f"{query_type.value} request failed ({e.code.value}), will retry: {e.message}")
            raise
        metrics.record_attempt(success=True)
        self._backoff_attempt = 0
        self._backoff_until = None
        return data

    def _enter_backoff(self, error: RateLimitedError, now: datetime) -> None:
        delay = self.queue.schedule.delay_for(self._backoff_attempt)
        if error.retry_after and error.retry_after > delay:
            delay = float(error.retry_after)
        self._backoff_attempt += 1
        self._backoff_until = now + timedelta(seconds=delay)
        origin = "plan limit" if error.local else "inference service"
        logger.warning(
            f"RATE LIMITED ({origin}) for athlete {self.athlete_id}: backing off {delay:.0f}s "
            f"until {self._backoff_until.isoformat()}"
        )

    def _apply_live(self, query_type: QueryType, payload: Dict[str, Any], data: Dict[str, Any]) -> PredictionResult:
        entry = self.cache.store_live(self.athlete_id, query_type, data)
        queued = self.queue.find(query_type, payload)
        if queued is not None:
            self.queue.remove(queued.request_id)
        return PredictionResult(
            query_type=query_type,
            source=PredictionSource.LIVE,
            payload=data,
            computed_at=entry.computed_at,
        )

    def _degraded(
        self,
        query_type: QueryType,
        error_code: Optional[str],
        fallback: Optional[Fallback],
        prefer_fallback: bool,
        now: datetime,
    ) -> PredictionResult:
        attempts = [self._from_fallback, self._from_cache]
        if not prefer_fallback:
            attempts.reverse()
        for attempt in attempts:
            result = attempt(query_type, error_code, fallback, now)
            if result is not None:
                return result
        logger.info(f"No {query_type.value} answer available for athlete {self.athlete_id}")
        return PredictionResult(query_type=query_type, source=PredictionSource.UNAVAILABLE, error_code=error_code)

    def _from_cache(self, query_type, error_code, fallback, now) -> Optional[PredictionResult]:
        cached = self.cache.get(self.athlete_id, query_type)
        if cached is None:
            return None
        logger.info(f"Serving cached {query_type.value} answer ({age_description(cached.computed_at, now)})")
        return PredictionResult(
            query_type=query_type,
            source=PredictionSource.CACHED,
            payload=cached.payload,
            computed_at=cached.computed_at,
            error_code=error_code,
        )

    def _from_fallback(self, query_type, error_code, fallback, now) -> Optional[PredictionResult]:
        if fallback is None:
            return None
        try:
            payload = fallback()
        except RideInsightsError as e:
            logger.info(f"Local {query_type.value} fallback unavailable: {e.message}")
            return None
        if payload is None:
            return None
        return PredictionResult(
            query_type=query_type,
            source=PredictionSource.LOCAL,
            payload=payload,
            computed_at=now,
            error_code=error_code,
        )

    def get(self, query_type: QueryType) -> PredictionResult:
        """Last cached answer for a query type, without calling out."""
        cached = self.cache.get(self.athlete_id, query_type)
        if cached is None:
            return PredictionResult(query_type=query_type, source=PredictionSource.UNAVAILABLE)
        return PredictionResult(
            query_type=query_type,
            source=PredictionSource.CACHED,
            payload=cached.payload,
            computed_at=cached.computed_at,
        )

    async def process_due_retries(self, now: Optional[datetime] = None) -> int:
        """
        Replay queued requests whose retry time has come.

        Returns the number that succeeded. Stops early on a rate limit or
        an authorization failure.
        """
        if not self.remote_enabled:
            return 0
        now = now or utcnow()
        if self.in_backoff(now):
            return 0

        succeeded = 0
        for request in self.queue.due(now):
            try:
                data = await self._call(request.query_type, request.payload, now)
            except UnauthorizedError:
                dropped = self.queue.clear()
                logger.error(f"Dropped {dropped} queued requests after authorization failure")
                break
            except RateLimitedError:
                self.queue.mark_failed(request.request_id, now, rate_limited=True, not_before=self._backoff_until)
                break
            except RideInsightsError as e:
                if is_retryable(e):
                    self.queue.mark_failed(request.request_id, now)
                else:
                    self.queue.remove(request.request_id)
                    logger.warning(f"Dropping queued {request.query_type.value} request: {e.message}")
                continue
            self._apply_live(request.query_type, request.payload, data)
            succeeded += 1

        if succeeded:
            logger.info(f"Replayed {succeeded} queued requests for athlete {self.athlete_id}")
        return succeeded

    # ------------------------------------------------------------------
    # Domain helpers
    # ------------------------------------------------------------------

    async def predict_ftp(
        self,
        rides: Sequence[RideSummary],
        current_ftp: Optional[int] = None,
        method: Any = FTPMethod.AUTO,
        as_of: Optional[date] = None,
    ) -> PredictionResult:
        parsed = parse_method(method)
        if current_ftp is not None and current_ftp <= 0:
            raise ValidationError("current_ftp must be positive", field="current_ftp")
        as_of = as_of or date.today()

        payload = {
            "athlete_id": self.athlete_id,
            "current_ftp": current_ftp,
            "method": parsed.value,
            "as_of": as_of.isoformat(),
            "rides": [r.to_dict() for r in rides],
        }

        def local() -> Dict[str, Any]:
            return self.ftp_predictor.predict(rides, current_ftp, parsed, as_of=as_of).to_dict()

        return await self.request(QueryType.FTP, payload, fallback=local)

    def start_ride(self, ride_id: str) -> FatigueState:
        return self.fatigue_monitor.start_ride(ride_id)

    def end_ride(self, ride_id: str) -> Optional[FatigueState]:
        return self.fatigue_monitor.end_ride(ride_id)

    def dismiss_fatigue(
        self,
        ride_id: str,
        now: Optional[datetime] = None,
        cooldown_minutes: Optional[int] = None,
    ) -> FatigueState:
        return self.fatigue_monitor.dismiss(ride_id, now=now, cooldown_minutes=cooldown_minutes)

    async def request_fatigue(
        self,
        ride_id: str,
        samples: Sequence[RideSample],
        target_power: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Optional[PredictionResult]:
        """
        Run the local alert state machine and ask the service for indicators.

        When the service is unreachable the local ride state is returned
        (source=local) rather than another ride's cached answer. Returns None
        if the ride ended while the call was in flight; the response is
        still cached.
        """
        state = self.fatigue_monitor.process(ride_id, samples, now=now, target_power=target_power)
        window = self.fatigue_monitor.analyzer.window(samples)
        payload = {
            "athlete_id": self.athlete_id,
            "ride_id": ride_id,
            "target_power": target_power,
            "samples": samples_to_payload(window),
        }

        result = await self.request(
            QueryType.FATIGUE,
            payload,
            fallback=state.to_dict,
            prefer_fallback=True,
            now=now,
        )
        if not self.fatigue_monitor.is_active(ride_id):
            logger.debug(f"Ride {ride_id} ended before its fatigue answer arrived; not delivered")
            return None
        return result

    async def recommend_workouts(
        self,
        goals: Sequence[TrainingGoal],
        ctl: float,
        atl: float,
        available_minutes: int,
        candidates: Optional[Iterable[CandidateWorkout]] = None,
        recently_completed: Iterable[str] = (),
        days_since_trained: Optional[Mapping[EnergySystem, int]] = None,
        acwr: Optional[float] = None,
    ) -> PredictionResult:
        if available_minutes < 0:
            raise ValidationError("available_minutes must not be negative", field="available_minutes")
        if ctl < 0 or atl < 0:
            raise ValidationError("ctl and atl must not be negative", field="ctl")

        pool = list(candidates) if candidates is not None else None
        recent = list(recently_completed)
        days = dict(days_since_trained or {})
        payload = {
            "athlete_id": self.athlete_id,
            "goals": [g.to_dict() for g in goals],
            "ctl": ctl,
            "atl": atl,
            "acwr": acwr,
            "available_minutes": available_minutes,
            "candidates": [w.to_dict() for w in pool] if pool is not None else None,
            "recently_completed": recent,
            "days_since_trained": {system.value: d for system, d in days.items()},
        }

        def local() -> Dict[str, Any]:
            return self.recommender.recommend(
                goals, ctl, atl, available_minutes,
                candidates=pool,
                recently_completed=recent,
                days_since_trained=days,
                acwr=acwr,
            ).to_dict()

        return await self.request(QueryType.RECOMMENDATIONS, payload, fallback=local)

    async def forecast_ctl(
        self,
        series: Sequence[CTLPoint],
        horizon_weeks: int,
        target_event: Optional[TargetEvent] = None,
    ) -> PredictionResult:
        if horizon_weeks < 1:
            raise ValidationError("horizon_weeks must be at least 1", field="horizon_weeks")
        validate_ctl_series(series)

        payload = {
            "athlete_id": self.athlete_id,
            "horizon_weeks": horizon_weeks,
            "series": [p.to_dict() for p in series],
            "target_event": target_event.to_dict() if target_event else None,
        }

        def local() -> Dict[str, Any]:
            return self.forecaster.forecast(series, horizon_weeks, target_event).to_dict()

        return await self.request(QueryType.CTL_FORECAST, payload, fallback=local)

    async def analyze_cadence(self, ride_id: str, samples: Sequence[RideSample]) -> PredictionResult:
        validate_samples(samples)
        payload = {
            "athlete_id": self.athlete_id,
            "ride_id": ride_id,
            "samples": samples_to_payload(samples),
        }

        def local() -> Dict[str, Any]:
            return self.cadence_analyzer.analyze(ride_id, samples).to_dict()

        return await self.request(QueryType.CADENCE, payload, fallback=local)
