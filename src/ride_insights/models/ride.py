"""Ride telemetry and training-load data models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..exceptions import ValidationError


def _parse_date(value: Any) -> date:
    """Parse a date from a date, datetime or ISO string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError as e:
            raise ValidationError(f"Invalid date: {value!r}", field="date") from e
    raise ValidationError(f"Invalid date: {value!r}", field="date")


@dataclass
class RideSample:
    """
    A single telemetry sample of an in-progress ride.

    Any sensor reading may be missing; analyzers degrade per field.
    """
    elapsed_seconds: float
    power_watts: Optional[float] = None
    heart_rate_bpm: Optional[float] = None
    cadence_rpm: Optional[float] = None

    @property
    def has_power_and_hr(self) -> bool:
        return self.power_watts is not None and self.heart_rate_bpm is not None

    def to_dict(self) -> dict:
        return {
            "elapsed_seconds": self.elapsed_seconds,
            "power_watts": self.power_watts,
            "heart_rate_bpm": self.heart_rate_bpm,
            "cadence_rpm": self.cadence_rpm,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RideSample":
        return cls(
            elapsed_seconds=data["elapsed_seconds"],
            power_watts=data.get("power_watts"),
            heart_rate_bpm=data.get("heart_rate_bpm"),
            cadence_rpm=data.get("cadence_rpm"),
        )


def validate_samples(samples: Sequence[RideSample]) -> None:
    """
    Check that elapsed_seconds is strictly increasing.

    Raises:
        ValidationError: On the first non-monotonic sample.
    """
    for index in range(1, len(samples)):
        previous = samples[index - 1].elapsed_seconds
        current = samples[index].elapsed_seconds
        if current <= previous:
            raise ValidationError(
                f"elapsed_seconds must be strictly increasing "
                f"(sample {index}: {current} after {previous})",
                field="elapsed_seconds",
                details={"index": index},
            )


@dataclass(frozen=True)
class PowerDurationPoint:
    """Best average power held for a duration."""
    duration_secs: int
    power_watts: float

    def to_dict(self) -> dict:
        return {"duration_secs": self.duration_secs, "power_watts": self.power_watts}


@dataclass(frozen=True)
class RideSummary:
    """
    Aggregate of a completed ride. Immutable once the ride is finalized.
    """
    ride_id: str
    ride_date: date
    duration_seconds: int
    avg_power: Optional[float] = None
    normalized_power: Optional[float] = None
    max_power: Optional[float] = None
    tss: Optional[float] = None
    pdc_points: Tuple[PowerDurationPoint, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Accept lists from callers but store an immutable tuple
        if not isinstance(self.pdc_points, tuple):
            object.__setattr__(self, "pdc_points", tuple(self.pdc_points))

    def best_power_between(self, min_secs: int, max_secs: Optional[int] = None) -> Optional[PowerDurationPoint]:
        """Highest-power point with min_secs <= duration (< max_secs when given)."""
        candidates = [
            p for p in self.pdc_points
            if p.duration_secs >= min_secs and (max_secs is None or p.duration_secs < max_secs)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda p: (p.power_watts, p.duration_secs))

    def to_dict(self) -> dict:
        return {
            "ride_id": self.ride_id,
            "ride_date": self.ride_date.isoformat(),
            "duration_seconds": self.duration_seconds,
            "avg_power": self.avg_power,
            "normalized_power": self.normalized_power,
            "max_power": self.max_power,
            "tss": self.tss,
            "pdc_points": [p.to_dict() for p in self.pdc_points],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RideSummary":
        return cls(
            ride_id=str(data["ride_id"]),
            ride_date=_parse_date(data["ride_date"]),
            duration_seconds=int(data.get("duration_seconds", 0)),
            avg_power=data.get("avg_power"),
            normalized_power=data.get("normalized_power"),
            max_power=data.get("max_power"),
            tss=data.get("tss"),
            pdc_points=tuple(
                PowerDurationPoint(int(p["duration_secs"]), float(p["power_watts"]))
                for p in data.get("pdc_points", [])
            ),
        )


@dataclass
class CTLPoint:
    """One day of the fitness-fatigue series."""
    date: date
    ctl: float
    atl: float
    tss: float = 0.0

    @property
    def acwr(self) -> Optional[float]:
        if self.ctl <= 0:
            return None
        return self.atl / self.ctl

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "ctl": round(self.ctl, 2),
            "atl": round(self.atl, 2),
            "tss": round(self.tss, 1),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CTLPoint":
        return cls(
            date=_parse_date(data["date"]),
            ctl=float(data["ctl"]),
            atl=float(data["atl"]),
            tss=float(data.get("tss") or 0.0),
        )


def validate_ctl_series(series: Sequence[CTLPoint]) -> None:
    """
    Check that the series is strictly increasing by date. Gaps are allowed.

    Raises:
        ValidationError: On a duplicate or out-of-order date.
    """
    for index in range(1, len(series)):
        if series[index].date <= series[index - 1].date:
            raise ValidationError(
                f"CTL series dates must be strictly increasing "
                f"({series[index].date} after {series[index - 1].date})",
                field="date",
                details={"index": index},
            )


def samples_to_payload(samples: Sequence[RideSample]) -> List[dict]:
    return [s.to_dict() for s in samples]
