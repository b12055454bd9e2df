"""Delivery-layer models: query types, cached answers and queued requests."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class QueryType(str, Enum):
    """One remote inference endpoint per analyzer."""
    FTP = "ftp"
    FATIGUE = "fatigue"
    RECOMMENDATIONS = "recommendations"
    CTL_FORECAST = "ctl_forecast"
    CADENCE = "cadence"

    @property
    def endpoint(self) -> str:
        endpoints = {
            QueryType.FTP: "/predictions/ftp",
            QueryType.FATIGUE: "/predictions/fatigue",
            QueryType.RECOMMENDATIONS: "/recommendations/workouts",
            QueryType.CTL_FORECAST: "/forecasts/ctl",
            QueryType.CADENCE: "/analysis/cadence",
        }
        return endpoints[self]

    @property
    def timeout_setting(self) -> str:
        """Name of the Settings attribute holding this endpoint's time budget."""
        settings_names = {
            QueryType.FTP: "ftp_timeout_seconds",
            QueryType.FATIGUE: "fatigue_timeout_seconds",
            QueryType.RECOMMENDATIONS: "recommendations_timeout_seconds",
            QueryType.CTL_FORECAST: "forecast_timeout_seconds",
            QueryType.CADENCE: "cadence_timeout_seconds",
        }
        return settings_names[self]


class PredictionSource(str, Enum):
    """Where an answer handed to the caller came from."""
    LIVE = "live"
    CACHED = "cached"
    LOCAL = "local"  # computed on-device while the service is unreachable
    UNAVAILABLE = "unavailable"

    @property
    def may_be_stale(self) -> bool:
        return self in (PredictionSource.CACHED, PredictionSource.LOCAL)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def payload_hash(payload: Dict[str, Any]) -> str:
    """Stable hash of a request payload (key order independent)."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CachedPrediction:
    """Last-known-good live answer for one (athlete, query_type)."""
    athlete_id: str
    query_type: QueryType
    payload: Dict[str, Any]
    computed_at: datetime
    source: PredictionSource = PredictionSource.LIVE

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return max(0.0, (now - self.computed_at).total_seconds())

    def to_dict(self) -> dict:
        return {
            "athlete_id": self.athlete_id,
            "query_type": self.query_type.value,
            "payload": self.payload,
            "computed_at": self.computed_at.isoformat(),
            "source": self.source.value,
        }


@dataclass
class PredictionResult:
    """
    Tagged answer returned for every engine access.

    Callers read `source` and `computed_at` to render staleness; a cached or
    local answer is never presented as live.
    """
    query_type: QueryType
    source: PredictionSource
    payload: Optional[Dict[str, Any]] = None
    computed_at: Optional[datetime] = None
    error_code: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.source != PredictionSource.UNAVAILABLE

    @property
    def is_stale(self) -> bool:
        return self.source.may_be_stale

    def to_dict(self) -> dict:
        return {
            "query_type": self.query_type.value,
            "source": self.source.value,
            "payload": self.payload,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
            "error_code": self.error_code,
        }


@dataclass
class QueuedRequest:
    """A remote request waiting for its next retry."""
    request_id: str
    query_type: QueryType
    payload: Dict[str, Any]
    enqueued_at: datetime
    next_retry_at: datetime
    attempt_count: int = 0
    last_attempt_at: Optional[datetime] = None
    rate_limited: bool = False
    payload_hash: str = field(default="")

    def __post_init__(self):
        if not self.payload_hash:
            self.payload_hash = payload_hash(self.payload)

    @property
    def key(self) -> tuple:
        return (self.query_type, self.payload_hash)

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "query_type": self.query_type.value,
            "payload_hash": self.payload_hash,
            "enqueued_at": self.enqueued_at.isoformat(),
            "next_retry_at": self.next_retry_at.isoformat(),
            "attempt_count": self.attempt_count,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "rate_limited": self.rate_limited,
        }
