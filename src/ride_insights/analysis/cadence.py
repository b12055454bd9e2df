"""Cadence and pedaling technique analysis."""

import logging
import statistics
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..exceptions import InsufficientDataError
from ..models.ride import RideSample, validate_samples

logger = logging.getLogger(__name__)


MIN_CADENCE_SAMPLES = 60
MIN_DEGRADATION_SAMPLES = 300
DEFAULT_OPTIMAL_RANGE: Tuple[int, int] = (85, 95)


class DegradationType(str, Enum):
    GRADUAL_DECLINE = "gradual_decline"
    INCREASING_VARIABILITY = "increasing_variability"


@dataclass
class CadenceEfficiency:
    score: float = 0.5
    consistency: float = 0.5
    smoothness: float = 0.5

    @property
    def label(self) -> str:
        if self.score >= 0.8:
            return "Excellent"
        elif self.score >= 0.6:
            return "Good"
        elif self.score >= 0.4:
            return "Fair"
        return "Needs Work"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 3),
            "consistency": round(self.consistency, 3),
            "smoothness": round(self.smoothness, 3),
            "label": self.label,
        }


@dataclass
class DegradationPattern:
    pattern_type: DegradationType
    onset_seconds: float
    severity: float
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern_type": self.pattern_type.value,
            "onset_seconds": self.onset_seconds,
            "severity": round(self.severity, 3),
            "description": self.description,
        }


@dataclass
class CadenceAnalysis:
    ride_id: str
    avg_cadence: float
    optimal_range: Tuple[int, int]
    time_in_optimal: float  # fraction 0-1
    efficiency: CadenceEfficiency
    degradation: Optional[DegradationPattern] = None
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ride_id": self.ride_id,
            "avg_cadence": round(self.avg_cadence, 1),
            "optimal_range": list(self.optimal_range),
            "time_in_optimal": round(self.time_in_optimal, 3),
            "efficiency": self.efficiency.to_dict(),
            "degradation": self.degradation.to_dict() if self.degradation else None,
            "recommendations": list(self.recommendations),
        }


class CadenceAnalyzer:
    """Scores pedaling consistency and spots cadence fade over a ride."""

    def __init__(self, optimal_range: Tuple[int, int] = DEFAULT_OPTIMAL_RANGE):
        self.optimal_range = optimal_range

    def analyze(self, ride_id: str, samples: Sequence[RideSample]) -> CadenceAnalysis:
        """
        Raises:
            ValidationError: If elapsed_seconds is not strictly increasing.
            InsufficientDataError: Fewer than 60 cadence readings.
        """
        validate_samples(samples)
        pedaling = [s for s in samples if s.cadence_rpm is not None and s.cadence_rpm > 0]
        if len(pedaling) < MIN_CADENCE_SAMPLES:
            raise InsufficientDataError(
                f"At least {MIN_CADENCE_SAMPLES} seconds of cadence data required, got {len(pedaling)}",
                guidance="Ensure your cadence sensor is connected throughout the ride.",
            )

        cadences = [s.cadence_rpm for s in pedaling]
        avg_cadence = statistics.fmean(cadences)
        time_in_optimal = self._time_in_optimal(cadences)
        efficiency = self._efficiency(cadences, time_in_optimal)
        degradation = self._detect_degradation(pedaling)

        analysis = CadenceAnalysis(
            ride_id=ride_id,
            avg_cadence=avg_cadence,
            optimal_range=self.optimal_range,
            time_in_optimal=time_in_optimal,
            efficiency=efficiency,
            degradation=degradation,
        )
        analysis.recommendations = self._recommendations(analysis)
        logger.debug(f"Cadence analysis for ride {ride_id}: {efficiency.label} ({efficiency.score:.2f})")
        return analysis

    def _time_in_optimal(self, cadences: Sequence[float]) -> float:
        low, high = self.optimal_range
        return sum(1 for c in cadences if low <= c <= high) / len(cadences)

    def _efficiency(self, cadences: Sequence[float], time_in_optimal: float) -> CadenceEfficiency:
        mean = statistics.fmean(cadences)
        cv = statistics.pstdev(cadences) / mean if mean > 0 else 1.0
        consistency = min(1.0, max(0.0, 1.0 - cv))

        # Typical good cadence varies by 2-3 rpm per second
        avg_diff = sum(abs(b - a) for a, b in zip(cadences, cadences[1:])) / (len(cadences) - 1)
        smoothness = min(1.0, max(0.0, 1.0 - avg_diff / 10.0))

        score = min(1.0, max(0.0, consistency * 0.3 + smoothness * 0.3 + time_in_optimal * 0.4))
        return CadenceEfficiency(score=score, consistency=consistency, smoothness=smoothness)

    def _detect_degradation(self, samples: Sequence[RideSample]) -> Optional[DegradationPattern]:
        if len(samples) < MIN_DEGRADATION_SAMPLES:
            return None

        third = len(samples) // 3
        first = [s.cadence_rpm for s in samples[:third]]
        last = [s.cadence_rpm for s in samples[2 * third:]]
        first_avg = statistics.fmean(first)
        last_avg = statistics.fmean(last)

        decline = (first_avg - last_avg) / first_avg
        if decline > 0.1:
            return DegradationPattern(
                pattern_type=DegradationType.GRADUAL_DECLINE,
                onset_seconds=samples[len(samples) // 2].elapsed_seconds,
                severity=min(1.0, decline),
                description=f"Cadence dropped from {first_avg:.0f} to {last_avg:.0f} rpm over the ride",
            )

        first_var = statistics.pvariance(first)
        last_var = statistics.pvariance(last)
        if first_var > 0 and last_var > first_var * 1.5:
            return DegradationPattern(
                pattern_type=DegradationType.INCREASING_VARIABILITY,
                onset_seconds=samples[2 * third].elapsed_seconds,
                severity=min(1.0, last_var / first_var - 1.0),
                description="Cadence became more erratic toward the end of the ride",
            )
        return None

    def _recommendations(self, analysis: CadenceAnalysis) -> List[str]:
        low, high = self.optimal_range
        tips = []

        if analysis.avg_cadence < low:
            tips.append(f"Try to maintain higher cadence (target {low}-{high} rpm)")
        if analysis.avg_cadence > high + 10:
            tips.append(f"Your cadence is high - consider slightly more resistance at {low}-{high} rpm")
        if analysis.time_in_optimal < 0.5:
            tips.append(
                f"Only {analysis.time_in_optimal * 100:.0f}% of ride was in optimal range - focus on steady cadence"
            )
        if analysis.efficiency.consistency < 0.5:
            tips.append("Work on maintaining more consistent cadence throughout intervals")
        if analysis.efficiency.smoothness < 0.5:
            tips.append("Focus on smooth, circular pedaling motion")

        if analysis.degradation is not None:
            if analysis.degradation.pattern_type == DegradationType.GRADUAL_DECLINE:
                tips.append("Cadence dropped late in ride - build cadence-specific endurance")
            else:
                tips.append("Cadence became erratic - practice maintaining rhythm under fatigue")

        if not tips:
            tips.append("Great cadence control! Keep up the good work.")
        return tips
