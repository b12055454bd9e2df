"""
Evidence models for explainable judgments.

FTP predictions, fatigue assessments and workout recommendations all carry an
Evidence value describing which data and which scoring terms produced them,
so a result can always be traced back to its inputs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ImpactType(str, Enum):
    """Impact direction of a factor on the judgment."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class DataSourceType(str, Enum):
    """Source of the data a factor was derived from."""
    RIDE_HISTORY = "ride_history"
    POWER_DURATION_CURVE = "power_duration_curve"
    RIDE_SAMPLES = "ride_samples"
    ATHLETE_BASELINE = "athlete_baseline"
    TRAINING_GOALS = "training_goals"
    TRAINING_LOAD = "training_load"
    WORKOUT_LIBRARY = "workout_library"


@dataclass
class EvidenceFactor:
    """
    A single contributing factor to a judgment.

    `contribution` is the factor's share of the final score (for weighted
    sums) or the measured value (for threshold checks).
    """
    name: str
    value: Any
    display_value: str
    impact: ImpactType = ImpactType.NEUTRAL
    weight: float = 0.0
    contribution: float = 0.0
    source: DataSourceType = DataSourceType.RIDE_HISTORY
    threshold: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "value": self.value,
            "display_value": self.display_value,
            "impact": self.impact.value,
            "weight": round(self.weight, 3),
            "contribution": round(self.contribution, 3),
            "source": self.source.value,
            "threshold": self.threshold,
        }


@dataclass
class Evidence:
    """Structured explanation threaded through every analyzer result."""
    summary: str
    factors: List[EvidenceFactor] = field(default_factory=list)
    references: List[str] = field(default_factory=list)  # ride / workout ids used

    @property
    def key_driver(self) -> Optional[EvidenceFactor]:
        """The factor with the largest absolute contribution."""
        if not self.factors:
            return None
        return max(self.factors, key=lambda f: abs(f.contribution))

    def dominant_factors(self, limit: int = 2) -> List[EvidenceFactor]:
        """Positive factors ordered by contribution, largest first."""
        positive = [f for f in self.factors if f.impact == ImpactType.POSITIVE]
        return sorted(positive, key=lambda f: f.contribution, reverse=True)[:limit]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "factors": [f.to_dict() for f in self.factors],
            "references": list(self.references),
            "key_driver": self.key_driver.name if self.key_driver else None,
        }
