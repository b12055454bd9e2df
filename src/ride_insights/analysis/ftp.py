"""
FTP Prediction

Estimate functional threshold power from ride history without a dedicated
test. Each ride contributes at most one effort per duration class; the
estimate is taken from the best effort of the chosen class and cross-checked
against the other efforts to grade confidence.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..config import Settings, get_settings
from ..exceptions import InsufficientDataError, ValidationError
from ..metrics.pdc import PowerDurationCurve
from ..metrics.power import (
    FTP_DURATION_CLASSES,
    MIN_QUALIFYING_DURATION_SECS,
    SIXTY_MINUTE,
    TWENTY_MINUTE,
    estimate_ftp_from_effort,
    estimate_ftp_from_ramp_test,
)
from ..models.evidence import DataSourceType, Evidence, EvidenceFactor, ImpactType
from ..models.ride import RideSummary

logger = logging.getLogger(__name__)


# Efforts within this share of the selected estimate corroborate it
AGREEMENT_TOLERANCE = 0.03

# Change (percent) that is worth telling the athlete about
NOTIFY_THRESHOLD_PERCENT = 3.0

RAMP_DURATION_SECS = 60
RAMP_TOLERANCE_SECS = 15


class FTPMethod(str, Enum):
    """Estimation method requested by the caller."""
    AUTO = "auto"
    EXTENDED_DURATION = "extended_duration"
    TWENTY_MINUTE = "twenty_minute"
    RAMP = "ramp"


class FTPConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def fraction(self) -> float:
        return {
            FTPConfidence.HIGH: 0.9,
            FTPConfidence.MEDIUM: 0.6,
            FTPConfidence.LOW: 0.3,
        }[self]


@dataclass(frozen=True)
class SupportingEffort:
    """A literal effort from the ride history that backs a prediction."""
    ride_id: str
    ride_date: date
    duration_secs: int
    power_watts: float
    duration_class: str
    estimate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ride_id": self.ride_id,
            "ride_date": self.ride_date.isoformat(),
            "duration_secs": self.duration_secs,
            "power_watts": self.power_watts,
            "duration_class": self.duration_class,
            "estimate": round(self.estimate, 1),
        }


@dataclass
class FTPPrediction:
    """Predicted FTP with confidence, interval and the efforts behind it."""
    predicted_ftp: int
    method: FTPMethod
    confidence: FTPConfidence
    confidence_lower: float
    confidence_upper: float
    qualifying_rides: int
    supporting_efforts: List[SupportingEffort]
    evidence: Evidence
    current_ftp: Optional[int] = None
    difference_percent: Optional[float] = None
    differs_from_current: bool = False
    computed_on: date = field(default_factory=date.today)

    @property
    def confidence_score(self) -> float:
        return self.confidence.fraction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predicted_ftp": self.predicted_ftp,
            "method": self.method.value,
            "confidence": self.confidence.value,
            "confidence_score": self.confidence_score,
            "confidence_interval": {
                "lower": round(self.confidence_lower, 1),
                "upper": round(self.confidence_upper, 1),
            },
            "qualifying_rides": self.qualifying_rides,
            "supporting_efforts": [e.to_dict() for e in self.supporting_efforts],
            "current_ftp": self.current_ftp,
            "difference_percent": self.difference_percent,
            "differs_from_current": self.differs_from_current,
            "computed_on": self.computed_on.isoformat(),
            "evidence": self.evidence.to_dict(),
        }


def parse_method(method: Any) -> FTPMethod:
    if isinstance(method, FTPMethod):
        return method
    try:
        return FTPMethod(str(method).lower())
    except ValueError as e:
        raise ValidationError(
            f"Unknown FTP method '{method}'. Use one of: {', '.join(m.value for m in FTPMethod)}",
            field="preferred_method",
        ) from e


class FTPPredictor:
    """Predicts FTP from the rides inside the lookback window."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def predict(
        self,
        rides: Sequence[RideSummary],
        current_ftp: Optional[int] = None,
        preferred_method: Any = FTPMethod.AUTO,
        as_of: Optional[date] = None,
    ) -> FTPPrediction:
        """
        Predict FTP.

        Raises:
            ValidationError: Unknown method or non-positive current FTP.
            InsufficientDataError: Too few qualifying rides, or no effort
                matching the requested method.
        """
        method = parse_method(preferred_method)
        if current_ftp is not None and current_ftp <= 0:
            raise ValidationError("current_ftp must be positive", field="current_ftp")

        as_of = as_of or date.today()
        lookback = self.settings.pdc_lookback_days
        curve = PowerDurationCurve.from_rides(rides, lookback_days=lookback, as_of=as_of)
        in_window = [r for r in rides if _within_lookback(r.ride_date, as_of, lookback)]

        qualifying = [r for r in in_window if r.best_power_between(MIN_QUALIFYING_DURATION_SECS)]
        required = self.settings.ftp_min_qualifying_rides
        if len(qualifying) < required:
            raise InsufficientDataError(
                f"FTP prediction needs {required} rides with an effort of 20 minutes or "
                f"longer in the last {lookback} days, found {len(qualifying)}",
                guidance=(
                    f"Record {required - len(qualifying)} more ride(s) that include a sustained "
                    f"effort of at least 20 minutes."
                ),
                details={"qualifying_rides": len(qualifying), "required": required},
            )

        efforts = self._collect_efforts(qualifying)

        if method == FTPMethod.RAMP:
            selected, estimate, confidence = self._ramp_estimate(curve, in_window)
            supporting = [selected] if selected else []
        else:
            selected = self._select_effort(efforts, method)
            estimate = selected.estimate
            supporting = self._agreeing_efforts(efforts, selected)
            distinct_rides = {e.ride_id for e in supporting}
            confidence = FTPConfidence.HIGH if len(distinct_rides) >= 2 else FTPConfidence.MEDIUM

        predicted = int(round(estimate))
        half_width = (1 - confidence.fraction) * predicted

        prediction = FTPPrediction(
            predicted_ftp=predicted,
            method=method,
            confidence=confidence,
            confidence_lower=max(0.0, predicted - half_width),
            confidence_upper=predicted + half_width,
            qualifying_rides=len(qualifying),
            supporting_efforts=supporting,
            evidence=Evidence(summary=""),
            computed_on=as_of,
        )

        if current_ftp is not None:
            prediction.current_ftp = current_ftp
            prediction.difference_percent = round((predicted - current_ftp) / current_ftp * 100, 1)
            prediction.differs_from_current = (
                abs(prediction.difference_percent) >= self.settings.ftp_change_threshold_percent
            )

        prediction.evidence = self._build_evidence(prediction, curve)
        logger.info(
            f"Predicted FTP {predicted}W via {method.value} "
            f"({confidence.value} confidence, {len(supporting)} supporting efforts)"
        )
        return prediction

    def _collect_efforts(self, rides: Sequence[RideSummary]) -> Dict[str, List[SupportingEffort]]:
        """Best effort per ride per duration class."""
        efforts: Dict[str, List[SupportingEffort]] = {name: [] for name in FTP_DURATION_CLASSES}
        for ride in rides:
            for name, rule in FTP_DURATION_CLASSES.items():
                point = ride.best_power_between(int(rule["min_secs"]), rule["max_secs"])
                if point is None:
                    continue
                efforts[name].append(SupportingEffort(
                    ride_id=ride.ride_id,
                    ride_date=ride.ride_date,
                    duration_secs=point.duration_secs,
                    power_watts=point.power_watts,
                    duration_class=name,
                    estimate=estimate_ftp_from_effort(point.power_watts, name),
                ))
        return efforts

    def _select_effort(
        self,
        efforts: Dict[str, List[SupportingEffort]],
        method: FTPMethod,
    ) -> SupportingEffort:
        if method == FTPMethod.TWENTY_MINUTE:
            pool = efforts[TWENTY_MINUTE]
        elif method == FTPMethod.EXTENDED_DURATION:
            pool = efforts[SIXTY_MINUTE] or efforts[TWENTY_MINUTE]
        else:
            pool = [e for class_efforts in efforts.values() for e in class_efforts]

        if not pool:
            raise InsufficientDataError(
                f"No efforts available for the {method.value} method",
                guidance="Ride a sustained 20-minute effort or choose the auto method.",
            )
        return max(pool, key=lambda e: (e.estimate, e.ride_date, e.ride_id))

    def _agreeing_efforts(
        self,
        efforts: Dict[str, List[SupportingEffort]],
        selected: SupportingEffort,
    ) -> List[SupportingEffort]:
        """Selected effort first, then other rides' efforts within tolerance."""
        supporting = [selected]
        seen_rides = {selected.ride_id}
        candidates = sorted(
            (e for class_efforts in efforts.values() for e in class_efforts),
            key=lambda e: abs(e.estimate - selected.estimate),
        )
        for effort in candidates:
            if effort.ride_id in seen_rides:
                continue
            if abs(effort.estimate - selected.estimate) <= AGREEMENT_TOLERANCE * selected.estimate:
                supporting.append(effort)
                seen_rides.add(effort.ride_id)
        return supporting

    def _ramp_estimate(self, curve: PowerDurationCurve, rides: Sequence[RideSummary]):
        """75% of the curve's one-minute power. Always low confidence."""
        one_minute = curve.power_at_actual(RAMP_DURATION_SECS, RAMP_TOLERANCE_SECS)
        if one_minute is None:
            raise InsufficientDataError(
                "No one-minute power on the power-duration curve for the ramp method",
                guidance="Include a hard one-minute effort in a ride.",
            )

        selected = None
        for ride in rides:
            point = ride.best_power_between(
                RAMP_DURATION_SECS - RAMP_TOLERANCE_SECS,
                RAMP_DURATION_SECS + RAMP_TOLERANCE_SECS + 1,
            )
            if point is None:
                continue
            if selected is None or point.power_watts > selected.power_watts:
                selected = SupportingEffort(
                    ride_id=ride.ride_id,
                    ride_date=ride.ride_date,
                    duration_secs=point.duration_secs,
                    power_watts=point.power_watts,
                    duration_class="one_minute",
                    estimate=estimate_ftp_from_ramp_test(point.power_watts),
                )
        return selected, estimate_ftp_from_ramp_test(one_minute), FTPConfidence.LOW

    def _build_evidence(self, prediction: FTPPrediction, curve: PowerDurationCurve) -> Evidence:
        factors = [
            EvidenceFactor(
                name="qualifying_rides",
                value=prediction.qualifying_rides,
                display_value=f"{prediction.qualifying_rides} rides",
                impact=ImpactType.POSITIVE,
                contribution=float(prediction.qualifying_rides),
                source=DataSourceType.RIDE_HISTORY,
                threshold=f">= {self.settings.ftp_min_qualifying_rides}",
            ),
            EvidenceFactor(
                name="corroborating_efforts",
                value=len(prediction.supporting_efforts),
                display_value=f"{len(prediction.supporting_efforts)} within 3%",
                impact=(
                    ImpactType.POSITIVE if len(prediction.supporting_efforts) >= 2
                    else ImpactType.NEUTRAL
                ),
                contribution=float(len(prediction.supporting_efforts)),
                source=DataSourceType.RIDE_HISTORY,
            ),
            EvidenceFactor(
                name="curve_shape",
                value=curve.confidence,
                display_value="monotonic" if curve.is_monotonic else (
                    f"{len(curve.monotonic_violations())} violation(s)"
                ),
                impact=ImpactType.NEUTRAL if curve.is_monotonic else ImpactType.NEGATIVE,
                contribution=curve.confidence,
                source=DataSourceType.POWER_DURATION_CURVE,
            ),
        ]

        if prediction.supporting_efforts:
            top = prediction.supporting_efforts[0]
            summary = (
                f"FTP {prediction.predicted_ftp}W from a {top.duration_secs // 60}-minute effort "
                f"at {top.power_watts:.0f}W on {top.ride_date.isoformat()}"
            )
        else:
            summary = f"FTP {prediction.predicted_ftp}W inferred from one-minute power"

        if prediction.difference_percent is not None:
            summary += f" ({prediction.difference_percent:+.1f}% vs current {prediction.current_ftp}W)"

        return Evidence(
            summary=summary,
            factors=factors,
            references=[e.ride_id for e in prediction.supporting_efforts],
        )


def _within_lookback(ride_date: date, as_of: date, lookback_days: int) -> bool:
    return 0 <= (as_of - ride_date).days <= lookback_days


def should_notify(prediction: FTPPrediction) -> bool:
    """Whether a prediction is worth surfacing to the athlete as an FTP change."""
    if not prediction.differs_from_current or prediction.difference_percent is None:
        return False
    if prediction.confidence == FTPConfidence.LOW:
        return False
    return abs(prediction.difference_percent) > NOTIFY_THRESHOLD_PERCENT
