"""
CTL Forecasting

Project chronic training load (fitness) forward from its recent trend and
score readiness for a target event.

The daily series is first folded into 7-day buckets ending at the most
recent point. Days without data are left out, never zero-filled, so a week
with two rides and a week with seven both contribute their mean CTL.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config import Settings, get_settings
from ..exceptions import InsufficientDataError, ValidationError
from ..models.athlete import TrainingGoal
from ..models.ride import CTLPoint, validate_ctl_series

logger = logging.getLogger(__name__)


MIN_BUCKETS = 3
TREND_HALF_LIFE_WEEKS = 4.0
Z_95 = 1.96

# CTL time constant (days) of the fitness model
CTL_TIME_CONSTANT = 42

PLATEAU_BUCKETS = 3
PLATEAU_SLOPE = 0.3
PLATEAU_MIN_DAILY_TSS = 20.0

DETRAINING_LOOKBACK_DAYS = 14
DETRAINING_ATL_RATIO = 0.8


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class DetrainingRisk(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def description(self) -> str:
        return {
            DetrainingRisk.NONE: "Training frequency is good",
            DetrainingRisk.LOW: "Minor fitness loss possible without increased training",
            DetrainingRisk.MEDIUM: "Fitness loss expected if training pattern continues",
            DetrainingRisk.HIGH: "Significant fitness loss imminent - increase training",
        }[self]


@dataclass(frozen=True)
class TargetEvent:
    """A dated event with the CTL the athlete wants to arrive with."""
    event_date: date
    target_ctl: float
    goal_id: Optional[str] = None

    @classmethod
    def from_goal(cls, goal: TrainingGoal) -> "TargetEvent":
        if goal.target_date is None or goal.target_ctl is None:
            raise ValidationError(
                f"Goal {goal.goal_id} needs a target_date and target_ctl to be forecast against",
                field="target_event",
            )
        return cls(event_date=goal.target_date, target_ctl=float(goal.target_ctl), goal_id=goal.goal_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_date": self.event_date.isoformat(),
            "target_ctl": self.target_ctl,
            "goal_id": self.goal_id,
        }


@dataclass
class WeeklyBucket:
    """Mean of the CTL points present in one 7-day bucket."""
    weeks_ago: int
    position: float  # mean offset of the bucket's points from the last point, in weeks
    ctl: float
    tss_per_day: float
    point_count: int


@dataclass
class ProjectedCTL:
    week: int
    date: date
    projected_ctl: float
    lower: float
    upper: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "week": self.week,
            "date": self.date.isoformat(),
            "projected_ctl": round(self.projected_ctl, 1),
            "lower": round(self.lower, 1),
            "upper": round(self.upper, 1),
        }


@dataclass
class EventReadiness:
    event_date: date
    days_to_event: int
    target_ctl: float
    projected_ctl_at_event: float
    gap: float  # target - projected; positive means short of target
    on_track: bool
    required_weekly_tss_delta: float
    recommendation: str
    goal_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "event_date": self.event_date.isoformat(),
            "days_to_event": self.days_to_event,
            "target_ctl": round(self.target_ctl, 1),
            "projected_ctl_at_event": round(self.projected_ctl_at_event, 1),
            "gap": round(self.gap, 1),
            "on_track": self.on_track,
            "required_weekly_tss_delta": round(self.required_weekly_tss_delta, 1),
            "recommendation": self.recommendation,
        }


@dataclass
class CTLForecast:
    """Weekly CTL projection with trend and risk assessment."""
    as_of: date
    current_ctl: float
    slope_per_week: float
    trend: TrendDirection
    plateau_detected: bool
    detraining_risk: DetrainingRisk
    projections: List[ProjectedCTL] = field(default_factory=list)
    event_readiness: Optional[EventReadiness] = None
    buckets_used: int = 0
    residual_std: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "current_ctl": round(self.current_ctl, 1),
            "slope_per_week": round(self.slope_per_week, 2),
            "trend": self.trend.value,
            "plateau_detected": self.plateau_detected,
            "detraining_risk": self.detraining_risk.value,
            "detraining_description": self.detraining_risk.description,
            "projections": [p.to_dict() for p in self.projections],
            "event_readiness": self.event_readiness.to_dict() if self.event_readiness else None,
            "buckets_used": self.buckets_used,
            "residual_std": round(self.residual_std, 2),
        }


def bucket_weekly(series: Sequence[CTLPoint]) -> List[WeeklyBucket]:
    """Fold a daily series into 7-day buckets, most recent first."""
    if not series:
        return []
    last = series[-1].date
    grouped: Dict[int, List[CTLPoint]] = {}
    for point in series:
        grouped.setdefault((last - point.date).days // 7, []).append(point)

    buckets = []
    for weeks_ago in sorted(grouped):
        points = grouped[weeks_ago]
        buckets.append(WeeklyBucket(
            weeks_ago=weeks_ago,
            position=sum((p.date - last).days for p in points) / len(points) / 7.0,
            ctl=sum(p.ctl for p in points) / len(points),
            tss_per_day=sum(p.tss for p in points) / len(points),
            point_count=len(points),
        ))
    return buckets


def weighted_trend(
    buckets: Sequence[WeeklyBucket],
    half_life_weeks: Optional[float] = TREND_HALF_LIFE_WEEKS,
) -> Tuple[float, float, float]:
    """
    Least-squares CTL slope per week over the given buckets.

    Weights decay by half every half_life_weeks into the past; pass None for
    an unweighted fit.

    Returns:
        (slope, residual standard deviation, slope standard error)
    """
    n = len(buckets)
    if n < 2:
        return 0.0, 0.0, 0.0

    if half_life_weeks:
        weights = [0.5 ** (b.weeks_ago / half_life_weeks) for b in buckets]
    else:
        weights = [1.0] * n
    total = sum(weights)
    x_mean = sum(w * b.position for w, b in zip(weights, buckets)) / total
    y_mean = sum(w * b.ctl for w, b in zip(weights, buckets)) / total
    sxx = sum(w * (b.position - x_mean) ** 2 for w, b in zip(weights, buckets))
    if sxx <= 0:
        return 0.0, 0.0, 0.0
    sxy = sum(w * (b.position - x_mean) * (b.ctl - y_mean) for w, b in zip(weights, buckets))
    slope = sxy / sxx

    if n <= 2:
        return slope, 0.0, 0.0

    residual_ss = sum(
        w * (b.ctl - (y_mean + slope * (b.position - x_mean))) ** 2
        for w, b in zip(weights, buckets)
    )
    # Weights rescaled to sum to n so the usual (n - 2) correction applies
    residual_std = math.sqrt(residual_ss / total * n / (n - 2))
    slope_std = residual_std / math.sqrt(sxx / total * n)
    return slope, residual_std, slope_std


class CTLForecaster:
    """Projects CTL weekly and scores event readiness."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def forecast(
        self,
        series: Sequence[CTLPoint],
        horizon_weeks: int,
        target_event: Optional[TargetEvent] = None,
    ) -> CTLForecast:
        """
        Raises:
            ValidationError: Out-of-order series, bad horizon or an event in the past.
            InsufficientDataError: Fewer than 3 weekly buckets of data.
        """
        if horizon_weeks < 1:
            raise ValidationError("horizon_weeks must be at least 1", field="horizon_weeks")
        validate_ctl_series(series)

        buckets = bucket_weekly(series)
        if len(buckets) < MIN_BUCKETS:
            raise InsufficientDataError(
                f"CTL forecast needs at least {MIN_BUCKETS} weeks with data, found {len(buckets)}",
                guidance="Keep logging rides; a forecast becomes available after three weeks.",
                details={"weeks_with_data": len(buckets)},
            )

        trend_buckets = [b for b in buckets if b.weeks_ago < self.settings.forecast_trend_weeks]
        if len(trend_buckets) < 2:
            trend_buckets = buckets[:MIN_BUCKETS]
        slope, residual_std, slope_std = weighted_trend(trend_buckets)

        last = series[-1]
        current_ctl = last.ctl
        projections = []
        for week in range(1, horizon_weeks + 1):
            projected = current_ctl + slope * week
            half_width = Z_95 * (residual_std * math.sqrt(week) + slope_std * week)
            half_width = max(half_width, 0.01 * current_ctl * math.sqrt(week))
            projections.append(ProjectedCTL(
                week=week,
                date=last.date + timedelta(days=7 * week),
                projected_ctl=max(0.0, projected),
                lower=max(0.0, projected - half_width),
                upper=max(0.0, projected + half_width),
            ))

        recent_buckets = [b for b in buckets if b.weeks_ago < PLATEAU_BUCKETS]
        recent_slope, _, _ = weighted_trend(recent_buckets, half_life_weeks=None)

        forecast = CTLForecast(
            as_of=last.date,
            current_ctl=current_ctl,
            slope_per_week=slope,
            trend=self._classify_trend(slope),
            plateau_detected=self._detect_plateau(recent_buckets, recent_slope),
            detraining_risk=self._assess_detraining_risk(series, recent_slope),
            projections=projections,
            buckets_used=len(trend_buckets),
            residual_std=residual_std,
        )

        if target_event is not None:
            forecast.event_readiness = self._event_readiness(last, slope, target_event)

        logger.info(
            f"CTL forecast: {forecast.trend.value} ({slope:+.2f}/week) over "
            f"{len(trend_buckets)} weeks, horizon {horizon_weeks} weeks"
        )
        return forecast

    def _classify_trend(self, slope: float) -> TrendDirection:
        threshold = self.settings.forecast_noise_threshold
        if slope > threshold:
            return TrendDirection.IMPROVING
        if slope < -threshold:
            return TrendDirection.DECLINING
        return TrendDirection.STABLE

    def _detect_plateau(self, recent_buckets: Sequence[WeeklyBucket], recent_slope: float) -> bool:
        """Flat CTL despite consistent training."""
        if len(recent_buckets) < 2:
            return False
        points = sum(b.point_count for b in recent_buckets)
        avg_tss = sum(b.tss_per_day * b.point_count for b in recent_buckets) / points
        return abs(recent_slope) < PLATEAU_SLOPE and avg_tss > PLATEAU_MIN_DAILY_TSS

    def _assess_detraining_risk(self, series: Sequence[CTLPoint], recent_slope: float) -> DetrainingRisk:
        last_date = series[-1].date
        recent = [p for p in series if (last_date - p.date).days < DETRAINING_LOOKBACK_DAYS]
        low_load_share = (
            sum(1 for p in recent if p.atl < DETRAINING_ATL_RATIO * p.ctl) / len(recent)
            if recent else 1.0
        )

        if low_load_share >= 0.75 or recent_slope < -2.0:
            return DetrainingRisk.HIGH
        if low_load_share >= 0.5 or recent_slope < -1.0:
            return DetrainingRisk.MEDIUM
        if low_load_share >= 0.25 or recent_slope < 0.0:
            return DetrainingRisk.LOW
        return DetrainingRisk.NONE

    def _event_readiness(self, last: CTLPoint, slope: float, event: TargetEvent) -> EventReadiness:
        days = (event.event_date - last.date).days
        if days <= 0:
            raise ValidationError(
                f"Event date {event.event_date.isoformat()} is not after the last CTL point",
                field="target_event",
            )

        projected = max(0.0, last.ctl + slope * days / 7.0)
        gap = event.target_ctl - projected
        on_track = gap <= 0

        if on_track:
            weekly_delta = 0.0
            recommendation = (
                f"On track: projected CTL {projected:.0f} meets the target of "
                f"{event.target_ctl:.0f} by {event.event_date.isoformat()}."
            )
        else:
            # Sustained extra daily load d lifts CTL by d * (1 - e^(-t/42)) after t days
            response = 1 - math.exp(-days / CTL_TIME_CONSTANT)
            weekly_delta = 7 * gap / response
            recommendation = (
                f"Add about {weekly_delta:.0f} TSS per week to reach CTL {event.target_ctl:.0f} "
                f"by {event.event_date.isoformat()} (projected {projected:.0f})."
            )

        return EventReadiness(
            event_date=event.event_date,
            days_to_event=days,
            target_ctl=event.target_ctl,
            projected_ctl_at_event=projected,
            gap=gap,
            on_track=on_track,
            required_weekly_tss_delta=weekly_delta,
            recommendation=recommendation,
            goal_id=event.goal_id,
        )
