"""Data models for ride insights."""

from .athlete import AthleteBaseline, GoalType, TrainingGoal
from .evidence import DataSourceType, Evidence, EvidenceFactor, ImpactType
from .predictions import (
    CachedPrediction,
    PredictionResult,
    PredictionSource,
    QueryType,
    QueuedRequest,
)
from .ride import (
    CTLPoint,
    PowerDurationPoint,
    RideSample,
    RideSummary,
    validate_ctl_series,
    validate_samples,
)
from .workouts import CandidateWorkout, EnergySystem, WorkoutSource

__all__ = [
    "AthleteBaseline",
    "GoalType",
    "TrainingGoal",
    "DataSourceType",
    "Evidence",
    "EvidenceFactor",
    "ImpactType",
    "CachedPrediction",
    "PredictionResult",
    "PredictionSource",
    "QueryType",
    "QueuedRequest",
    "CTLPoint",
    "PowerDurationPoint",
    "RideSample",
    "RideSummary",
    "validate_ctl_series",
    "validate_samples",
    "CandidateWorkout",
    "EnergySystem",
    "WorkoutSource",
]
