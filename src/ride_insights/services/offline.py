"""
Offline queue and prediction cache.

The queue holds remote requests that failed with a retryable error until
their next scheduled attempt. The cache keeps the last live answer per
(athlete, query type) so a degraded read can still return something,
tagged as cached with its original computed_at.
"""

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..db.prediction_cache_repository import PredictionCacheRepository
from ..models.predictions import (
    CachedPrediction,
    PredictionSource,
    QueryType,
    QueuedRequest,
    payload_hash,
    utcnow,
)
from ..tools.retry import BackoffSchedule

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 50


class OfflineQueue:
    """
    Bounded FIFO of requests awaiting retry.

    All mutations happen under a single lock, so concurrent retry tasks
    can never push the queue past max_size. On overflow the oldest
    request is dropped.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        schedule: Union[BackoffSchedule, Sequence[float]] = (30, 60, 120, 300),
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.schedule = schedule if isinstance(schedule, BackoffSchedule) else BackoffSchedule(schedule)
        self._lock = threading.Lock()
        self._requests: "OrderedDict[str, QueuedRequest]" = OrderedDict()
        self._by_key: Dict[Tuple[QueryType, str], str] = {}
        self.dropped_count = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def enqueue(
        self,
        query_type: QueryType,
        payload: Dict[str, Any],
        now: Optional[datetime] = None,
        rate_limited: bool = False,
        not_before: Optional[datetime] = None,
    ) -> QueuedRequest:
        """
        Queue a request for retry.

        A request with the same (query_type, payload) already in the queue
        is returned unchanged instead of being added twice. The first retry
        is scheduled one schedule step after enqueue, or at not_before when
        that is later.
        """
        now = now or utcnow()
        key = (query_type, payload_hash(payload))
        with self._lock:
            existing_id = self._by_key.get(key)
            if existing_id is not None:
                existing = self._requests[existing_id]
                existing.rate_limited = existing.rate_limited or rate_limited
                return existing

            if len(self._requests) >= self.max_size:
                _, oldest = self._requests.popitem(last=False)
                self._by_key.pop(oldest.key, None)
                self.dropped_count += 1
                logger.warning(
                    f"Offline queue full ({self.max_size}), dropped oldest "
                    f"{oldest.query_type.value} request {oldest.request_id}"
                )

            next_retry_at = self.schedule.next_time(now, 0)
            if not_before is not None and not_before > next_retry_at:
                next_retry_at = not_before
            request = QueuedRequest(
                request_id=uuid.uuid4().hex,
                query_type=query_type,
                payload=payload,
                enqueued_at=now,
                next_retry_at=next_retry_at,
                rate_limited=rate_limited,
                payload_hash=key[1],
            )
            self._requests[request.request_id] = request
            self._by_key[key] = request.request_id

        logger.debug(
            f"Queued {query_type.value} request {request.request_id} "
            f"(retry at {request.next_retry_at.isoformat()})"
        )
        return request

    def due(self, now: Optional[datetime] = None) -> List[QueuedRequest]:
        """Requests whose next retry time has passed, in queue order."""
        now = now or utcnow()
        with self._lock:
            return [r for r in self._requests.values() if r.next_retry_at <= now]

    def next_due_at(self) -> Optional[datetime]:
        with self._lock:
            if not self._requests:
                return None
            return min(r.next_retry_at for r in self._requests.values())

    def mark_failed(
        self,
        request_id: str,
        now: Optional[datetime] = None,
        rate_limited: bool = False,
        not_before: Optional[datetime] = None,
    ) -> Optional[QueuedRequest]:
        """
        Record a failed retry and schedule the next one.

        Returns None if the request is no longer queued (evicted or removed).
        """
        now = now or utcnow()
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                return None
            request.attempt_count += 1
            request.last_attempt_at = now
            request.rate_limited = rate_limited
            next_retry_at = self.schedule.next_time(now, request.attempt_count)
            if not_before is not None and not_before > next_retry_at:
                next_retry_at = not_before
            request.next_retry_at = next_retry_at
        logger.debug(
            f"Retry {request.attempt_count} of {request.query_type.value} request {request_id} failed, "
            f"next attempt at {next_retry_at.isoformat()}"
        )
        return request

    def remove(self, request_id: str) -> Optional[QueuedRequest]:
        with self._lock:
            request = self._requests.pop(request_id, None)
            if request is not None:
                self._by_key.pop(request.key, None)
            return request

    def find(self, query_type: QueryType, payload: Dict[str, Any]) -> Optional[QueuedRequest]:
        with self._lock:
            request_id = self._by_key.get((query_type, payload_hash(payload)))
            return self._requests.get(request_id) if request_id else None

    def pending(self) -> List[QueuedRequest]:
        """Snapshot of the queue, oldest first."""
        with self._lock:
            return list(self._requests.values())

    def clear(self) -> int:
        with self._lock:
            count = len(self._requests)
            self._requests.clear()
            self._by_key.clear()
        if count:
            logger.info(f"Cleared {count} queued requests")
        return count


class PredictionCache:
    """
    Last-known-good live answers, one per (athlete, query type).

    Only store_live writes here, so a cached or locally computed answer can
    never overwrite a live one. Entries do not expire; callers judge
    staleness from computed_at. When a repository is given, writes go
    through to it and misses are read back from it.
    """

    def __init__(self, repository: Optional[PredictionCacheRepository] = None):
        self.repository = repository
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, QueryType], CachedPrediction] = {}

    def store_live(
        self,
        athlete_id: str,
        query_type: QueryType,
        payload: Dict[str, Any],
        computed_at: Optional[datetime] = None,
    ) -> CachedPrediction:
        entry = CachedPrediction(
            athlete_id=athlete_id,
            query_type=query_type,
            payload=payload,
            computed_at=computed_at or utcnow(),
            source=PredictionSource.LIVE,
        )
        with self._lock:
            self._entries[(athlete_id, query_type)] = entry
        if self.repository is not None:
            self.repository.save(entry)
        return entry

    def get(self, athlete_id: str, query_type: QueryType) -> Optional[CachedPrediction]:
        """Return the cached answer tagged source=cached, or None."""
        with self._lock:
            entry = self._entries.get((athlete_id, query_type))
        if entry is None and self.repository is not None:
            entry = self.repository.get(athlete_id, query_type)
            if entry is not None:
                with self._lock:
                    # A live write that landed meanwhile wins
                    entry = self._entries.setdefault((athlete_id, query_type), entry)
        if entry is None:
            return None
        return replace(entry, source=PredictionSource.CACHED)

    def clear(self, athlete_id: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k[0] == athlete_id]
            for k in keys:
                del self._entries[k]
        removed = len(keys)
        if self.repository is not None:
            removed = max(removed, self.repository.delete_for_athlete(athlete_id))
        return removed


def age_description(computed_at: datetime, now: Optional[datetime] = None) -> str:
    """Short human-readable age of a cached answer, e.g. '5 min ago'."""
    now = now or utcnow()
    age = now - computed_at
    if age < timedelta(minutes=1):
        return "just now"
    if age < timedelta(hours=1):
        return f"{int(age.total_seconds() // 60)} min ago"
    if age < timedelta(days=1):
        return f"{int(age.total_seconds() // 3600)} h ago"
    return f"{age.days} d ago"
