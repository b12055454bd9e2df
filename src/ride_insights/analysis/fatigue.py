"""
In-ride fatigue detection.

Fatigue is judged over the most recent window of ride samples from two
signals compared against the athlete's baseline:

- Aerobic decoupling: how far the power-per-heartbeat ratio falls from the
  first half of the window to the second.
- Power variability: NP / average power, i.e. how much the rider is surging.

A per-ride FatigueState carries the alert/dismiss/cooldown state machine so
that an athlete who dismisses an alert is not nagged again before the
cooldown runs out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..config import Settings, get_settings
from ..exceptions import ValidationError
from ..metrics.power import (
    calculate_efficiency_factor,
    calculate_normalized_power,
    calculate_variability_index,
    estimate_sample_rate,
)
from ..models.athlete import AthleteBaseline
from ..models.evidence import DataSourceType, Evidence, EvidenceFactor, ImpactType
from ..models.predictions import utcnow
from ..models.ride import RideSample, validate_samples

logger = logging.getLogger(__name__)


# Less data than this in the window gives no reading
MIN_ANALYSIS_SECONDS = 300

# A signal that has used this share of its headroom is reported as mild
MILD_FRACTION = 0.8

MIN_COOLDOWN_MINUTES = 5
MAX_COOLDOWN_MINUTES = 10


class FatigueSeverity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class FatiguePhase(str, Enum):
    """Alert lifecycle for a single ride."""
    MONITORING = "monitoring"
    ALERTED = "alerted"
    DISMISSED = "dismissed"


@dataclass
class FatigueIndicators:
    """Fatigue signals for one evaluation window."""
    aerobic_decoupling_score: Optional[float] = None
    power_variability_index: Optional[float] = None
    hrv_fatigue_indicator: Optional[float] = None
    severity: Optional[FatigueSeverity] = None
    breaches: List[str] = field(default_factory=list)
    confidence: float = 0.0
    window_seconds: float = 0.0
    sample_count: int = 0
    message: str = "No significant fatigue detected"
    evidence: Evidence = field(default_factory=lambda: Evidence(summary=""))

    @property
    def alert_worthy(self) -> bool:
        return self.severity in (FatigueSeverity.MODERATE, FatigueSeverity.SEVERE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aerobic_decoupling_score": self.aerobic_decoupling_score,
            "power_variability_index": self.power_variability_index,
            "hrv_fatigue_indicator": self.hrv_fatigue_indicator,
            "severity": self.severity.value if self.severity else None,
            "breaches": list(self.breaches),
            "confidence": self.confidence,
            "window_seconds": self.window_seconds,
            "sample_count": self.sample_count,
            "message": self.message,
            "evidence": self.evidence.to_dict(),
        }


@dataclass
class SuppressedAlert:
    """A severe breach that arrived while the athlete's dismissal was active."""
    at: datetime
    severity: FatigueSeverity
    breaches: List[str]
    dismissed_until: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "at": self.at.isoformat(),
            "severity": self.severity.value,
            "breaches": list(self.breaches),
            "dismissed_until": self.dismissed_until.isoformat() if self.dismissed_until else None,
        }


@dataclass
class FatigueState:
    """
    Per-ride fatigue state. Created at ride start, mutated per sample batch,
    discarded at ride end.
    """
    ride_id: str
    phase: FatiguePhase = FatiguePhase.MONITORING
    indicators: Optional[FatigueIndicators] = None
    alert_triggered: bool = False
    severity: Optional[FatigueSeverity] = None
    last_alert_at: Optional[datetime] = None
    dismissed_until: Optional[datetime] = None
    suppressed_alerts: List[SuppressedAlert] = field(default_factory=list)
    alerts_fired: int = 0

    def is_in_cooldown(self, now: datetime) -> bool:
        return self.dismissed_until is not None and now < self.dismissed_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ride_id": self.ride_id,
            "phase": self.phase.value,
            "indicators": self.indicators.to_dict() if self.indicators else None,
            "alert_triggered": self.alert_triggered,
            "severity": self.severity.value if self.severity else None,
            "last_alert_at": self.last_alert_at.isoformat() if self.last_alert_at else None,
            "dismissed_until": self.dismissed_until.isoformat() if self.dismissed_until else None,
            "suppressed_alerts": [a.to_dict() for a in self.suppressed_alerts],
            "alerts_fired": self.alerts_fired,
        }


def _mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class FatigueAnalyzer:
    """Computes fatigue indicators and drives the per-ride alert state."""

    def __init__(
        self,
        baseline: Optional[AthleteBaseline] = None,
        settings: Optional[Settings] = None,
    ):
        self.baseline = baseline or AthleteBaseline()
        self.settings = settings or get_settings()

    @property
    def decoupling_bound(self) -> float:
        return self.baseline.typical_aerobic_decoupling * self.settings.decoupling_multiplier

    @property
    def variability_bound(self) -> float:
        return self.baseline.typical_power_variability * self.settings.variability_multiplier

    def window(self, samples: Sequence[RideSample]) -> List[RideSample]:
        """Samples inside the trailing analysis window."""
        if not samples:
            return []
        cutoff = samples[-1].elapsed_seconds - self.settings.fatigue_window_seconds
        return [s for s in samples if s.elapsed_seconds >= cutoff]

    def evaluate(
        self,
        samples: Sequence[RideSample],
        target_power: Optional[float] = None,
    ) -> FatigueIndicators:
        """
        Compute indicators for the trailing window. Pure.

        Missing heart rate leaves decoupling and the HRV indicator unset;
        missing power leaves variability unset. Neither raises.

        Raises:
            ValidationError: If elapsed_seconds is not strictly increasing.
        """
        validate_samples(samples)
        window = self.window(samples)
        span = window[-1].elapsed_seconds - window[0].elapsed_seconds if window else 0.0

        if span < MIN_ANALYSIS_SECONDS:
            return FatigueIndicators(
                window_seconds=span,
                sample_count=len(window),
                message="Not enough ride data yet",
                evidence=Evidence(summary=f"Only {span:.0f}s of data in the analysis window"),
            )

        midpoint = window[0].elapsed_seconds + span / 2
        first_half = [s for s in window if s.elapsed_seconds < midpoint]
        second_half = [s for s in window if s.elapsed_seconds >= midpoint]

        decoupling = self._aerobic_decoupling(first_half, second_half)
        hrv_indicator = self._hr_drift_indicator(first_half, second_half)
        variability = self._variability(window)

        indicators = FatigueIndicators(
            aerobic_decoupling_score=decoupling,
            power_variability_index=variability,
            hrv_fatigue_indicator=hrv_indicator,
            confidence=self._confidence(window),
            window_seconds=span,
            sample_count=len(window),
        )
        self._classify(indicators)
        indicators.evidence = self._build_evidence(indicators, window, target_power)
        return indicators

    def update(
        self,
        state: FatigueState,
        samples: Sequence[RideSample],
        now: Optional[datetime] = None,
        target_power: Optional[float] = None,
    ) -> FatigueState:
        """
        Feed a sample batch through the alert state machine.

        Indicators always refresh. While a dismissal is active no alert
        fires; a severe breach during that time is recorded in
        suppressed_alerts and fires only when severe_overrides_cooldown
        is set.
        """
        now = now or utcnow()
        indicators = self.evaluate(samples, target_power)
        state.indicators = indicators
        state.severity = indicators.severity

        if state.phase == FatiguePhase.DISMISSED and not state.is_in_cooldown(now):
            logger.debug(f"Cooldown over for ride {state.ride_id}, monitoring resumed")
            state.phase = FatiguePhase.MONITORING
            state.dismissed_until = None

        if state.phase == FatiguePhase.DISMISSED:
            if indicators.severity == FatigueSeverity.SEVERE:
                if self.settings.severe_overrides_cooldown:
                    logger.warning(f"Severe fatigue on ride {state.ride_id} overrides dismissal")
                    self._fire(state, now)
                else:
                    self._suppress(state, indicators, now)
            return state

        if indicators.alert_worthy:
            if state.phase != FatiguePhase.ALERTED:
                self._fire(state, now)
        elif state.phase == FatiguePhase.ALERTED:
            logger.info(f"Fatigue signals cleared on ride {state.ride_id}")
            state.phase = FatiguePhase.MONITORING
            state.alert_triggered = False

        return state

    def _suppress(self, state: FatigueState, indicators: FatigueIndicators, now: datetime) -> None:
        # One record per dismissal and breach set, not one per sample batch
        last = state.suppressed_alerts[-1] if state.suppressed_alerts else None
        if (
            last is not None
            and last.dismissed_until == state.dismissed_until
            and last.breaches == indicators.breaches
        ):
            return
        logger.warning(
            f"Severe fatigue on ride {state.ride_id} suppressed during cooldown "
            f"(until {state.dismissed_until.isoformat()})"
        )
        state.suppressed_alerts.append(SuppressedAlert(
            at=now,
            severity=indicators.severity,
            breaches=list(indicators.breaches),
            dismissed_until=state.dismissed_until,
        ))

    def dismiss(
        self,
        state: FatigueState,
        now: Optional[datetime] = None,
        cooldown_minutes: Optional[int] = None,
    ) -> FatigueState:
        """
        Dismiss the current alert and start the cooldown.

        Raises:
            ValidationError: If the cooldown is outside 5-10 minutes.
        """
        now = now or utcnow()
        minutes = self.settings.fatigue_cooldown_minutes if cooldown_minutes is None else cooldown_minutes
        if not MIN_COOLDOWN_MINUTES <= minutes <= MAX_COOLDOWN_MINUTES:
            raise ValidationError(
                f"Cooldown must be between {MIN_COOLDOWN_MINUTES} and {MAX_COOLDOWN_MINUTES} minutes",
                field="cooldown_minutes",
                details={"value": minutes},
            )

        state.phase = FatiguePhase.DISMISSED
        state.alert_triggered = False
        state.dismissed_until = now + timedelta(minutes=minutes)
        logger.info(f"Fatigue alert dismissed for ride {state.ride_id} for {minutes} min")
        return state

    def _fire(self, state: FatigueState, now: datetime) -> None:
        state.phase = FatiguePhase.ALERTED
        state.alert_triggered = True
        state.last_alert_at = now
        state.dismissed_until = None
        state.alerts_fired += 1
        logger.info(
            f"Fatigue alert ({state.severity.value if state.severity else 'unknown'}) "
            f"on ride {state.ride_id}"
        )

    def _aerobic_decoupling(
        self,
        first_half: Sequence[RideSample],
        second_half: Sequence[RideSample],
    ) -> Optional[float]:
        first = [s for s in first_half if s.has_power_and_hr]
        second = [s for s in second_half if s.has_power_and_hr]
        if not first or not second:
            return None

        first_ef = calculate_efficiency_factor(
            sum(s.power_watts for s in first), sum(s.heart_rate_bpm for s in first)
        )
        second_ef = calculate_efficiency_factor(
            sum(s.power_watts for s in second), sum(s.heart_rate_bpm for s in second)
        )
        if first_ef <= 0:
            return None
        return round((first_ef - second_ef) / first_ef, 4)

    def _hr_drift_indicator(
        self,
        first_half: Sequence[RideSample],
        second_half: Sequence[RideSample],
    ) -> Optional[float]:
        first = _mean([s.heart_rate_bpm for s in first_half if s.heart_rate_bpm is not None])
        second = _mean([s.heart_rate_bpm for s in second_half if s.heart_rate_bpm is not None])
        if first is None or second is None:
            return None
        return round((second - first) / self.baseline.heart_rate_reserve, 4)

    def _variability(self, window: Sequence[RideSample]) -> Optional[float]:
        powered = [s for s in window if s.power_watts is not None]
        if not powered:
            return None
        powers = [s.power_watts for s in powered]
        avg_power = sum(powers) / len(powers)
        if avg_power <= 0:
            return None
        rate = estimate_sample_rate([s.elapsed_seconds for s in powered])
        normalized = calculate_normalized_power(powers, sample_rate_hz=rate)
        if normalized <= 0:
            return None
        return calculate_variability_index(normalized, avg_power)

    def _confidence(self, window: Sequence[RideSample]) -> float:
        """Weighted by window length, HR coverage and power coverage."""
        if not window:
            return 0.0
        span = window[-1].elapsed_seconds - window[0].elapsed_seconds
        span_factor = min(1.0, span / self.settings.fatigue_window_seconds)
        hr_factor = sum(1 for s in window if s.heart_rate_bpm is not None) / len(window)
        power_factor = sum(1 for s in window if s.power_watts is not None) / len(window)
        return round(span_factor * 0.3 + hr_factor * 0.4 + power_factor * 0.3, 3)

    def _classify(self, indicators: FatigueIndicators) -> None:
        breaches = []
        near = []

        decoupling = indicators.aerobic_decoupling_score
        if decoupling is not None:
            if decoupling > self.decoupling_bound:
                breaches.append("aerobic_decoupling")
            elif decoupling >= MILD_FRACTION * self.decoupling_bound:
                near.append("aerobic_decoupling")

        variability = indicators.power_variability_index
        if variability is not None:
            bound = self.variability_bound
            if variability > bound:
                breaches.append("power_variability")
            elif variability - 1.0 >= MILD_FRACTION * (bound - 1.0):
                near.append("power_variability")

        indicators.breaches = breaches
        if len(breaches) >= 2:
            indicators.severity = FatigueSeverity.SEVERE
            indicators.message = "Significant fatigue detected - consider reducing intensity or stopping"
        elif breaches:
            indicators.severity = FatigueSeverity.MODERATE
            if breaches[0] == "aerobic_decoupling":
                indicators.message = "Moderate fatigue detected - heart rate drift indicates reduced efficiency"
            else:
                indicators.message = "Moderate fatigue detected - power output is becoming erratic"
        elif near:
            indicators.severity = FatigueSeverity.MILD
            indicators.message = "Mild fatigue signs - monitor your effort level"
        else:
            indicators.severity = None

    def _build_evidence(
        self,
        indicators: FatigueIndicators,
        window: Sequence[RideSample],
        target_power: Optional[float],
    ) -> Evidence:
        factors = []
        if indicators.aerobic_decoupling_score is not None:
            breached = "aerobic_decoupling" in indicators.breaches
            factors.append(EvidenceFactor(
                name="aerobic_decoupling",
                value=indicators.aerobic_decoupling_score,
                display_value=f"{indicators.aerobic_decoupling_score * 100:.1f}%",
                impact=ImpactType.NEGATIVE if breached else ImpactType.NEUTRAL,
                contribution=indicators.aerobic_decoupling_score,
                source=DataSourceType.RIDE_SAMPLES,
                threshold=f"> {self.decoupling_bound * 100:.1f}%",
            ))
        if indicators.power_variability_index is not None:
            breached = "power_variability" in indicators.breaches
            bound = self.variability_bound
            factors.append(EvidenceFactor(
                name="power_variability",
                value=indicators.power_variability_index,
                display_value=f"VI {indicators.power_variability_index:.2f}",
                impact=ImpactType.NEGATIVE if breached else ImpactType.NEUTRAL,
                contribution=indicators.power_variability_index,
                source=DataSourceType.RIDE_SAMPLES,
                threshold=f"> {bound:.2f}",
            ))
        if indicators.hrv_fatigue_indicator is not None:
            factors.append(EvidenceFactor(
                name="heart_rate_drift",
                value=indicators.hrv_fatigue_indicator,
                display_value=f"{indicators.hrv_fatigue_indicator * 100:.1f}% of HR reserve",
                contribution=indicators.hrv_fatigue_indicator,
                source=DataSourceType.ATHLETE_BASELINE,
            ))
        if target_power:
            powers = [s.power_watts for s in window if s.power_watts is not None]
            if powers:
                adherence = (sum(powers) / len(powers)) / target_power
                factors.append(EvidenceFactor(
                    name="target_adherence",
                    value=round(adherence, 3),
                    display_value=f"{adherence * 100:.0f}% of target",
                    contribution=adherence,
                    source=DataSourceType.RIDE_SAMPLES,
                ))

        return Evidence(summary=indicators.message, factors=factors)


class FatigueMonitor:
    """Owns the fatigue state of every active ride."""

    def __init__(self, analyzer: Optional[FatigueAnalyzer] = None):
        self.analyzer = analyzer or FatigueAnalyzer()
        self._states: Dict[str, FatigueState] = {}

    def start_ride(self, ride_id: str) -> FatigueState:
        state = FatigueState(ride_id=ride_id)
        self._states[ride_id] = state
        logger.debug(f"Fatigue monitoring started for ride {ride_id}")
        return state

    def is_active(self, ride_id: str) -> bool:
        return ride_id in self._states

    def get_state(self, ride_id: str) -> Optional[FatigueState]:
        return self._states.get(ride_id)

    def _require(self, ride_id: str) -> FatigueState:
        state = self._states.get(ride_id)
        if state is None:
            raise ValidationError(f"Ride {ride_id} is not being monitored", field="ride_id")
        return state

    def process(
        self,
        ride_id: str,
        samples: Sequence[RideSample],
        now: Optional[datetime] = None,
        target_power: Optional[float] = None,
    ) -> FatigueState:
        return self.analyzer.update(self._require(ride_id), samples, now=now, target_power=target_power)

    def dismiss(
        self,
        ride_id: str,
        now: Optional[datetime] = None,
        cooldown_minutes: Optional[int] = None,
    ) -> FatigueState:
        return self.analyzer.dismiss(self._require(ride_id), now=now, cooldown_minutes=cooldown_minutes)

    def end_ride(self, ride_id: str) -> Optional[FatigueState]:
        """Discard the ride's state. Returns the final state, if any."""
        state = self._states.pop(ride_id, None)
        if state is not None:
            logger.debug(f"Fatigue monitoring ended for ride {ride_id}")
        return state
