"""Cycling analytics engine: FTP, fatigue, workouts and CTL with offline-resilient delivery."""

from .analysis import (
    CadenceAnalyzer,
    CTLForecaster,
    FatigueAnalyzer,
    FatigueMonitor,
    FTPPredictor,
    TargetEvent,
)
from .config import Settings, get_settings
from .integrations import InferenceGateway
from .metrics import PowerDurationCurve
from .models import (
    CTLPoint,
    PredictionResult,
    PredictionSource,
    QueryType,
    RideSample,
    RideSummary,
)
from .recommendations import WorkoutRecommender
from .services import AthleteSession, OfflineQueue, PredictionCache

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    "get_settings",
    # Models
    "CTLPoint",
    "PredictionResult",
    "PredictionSource",
    "QueryType",
    "RideSample",
    "RideSummary",
    # Analytics
    "PowerDurationCurve",
    "FTPPredictor",
    "FatigueAnalyzer",
    "FatigueMonitor",
    "CTLForecaster",
    "TargetEvent",
    "CadenceAnalyzer",
    "WorkoutRecommender",
    # Delivery
    "InferenceGateway",
    "OfflineQueue",
    "PredictionCache",
    "AthleteSession",
]
