"""Ride analysis: FTP prediction, fatigue detection, CTL forecasting, cadence."""

from .cadence import CadenceAnalysis, CadenceAnalyzer
from .fatigue import (
    FatigueAnalyzer,
    FatigueIndicators,
    FatigueMonitor,
    FatiguePhase,
    FatigueSeverity,
    FatigueState,
)
from .forecast import CTLForecast, CTLForecaster, DetrainingRisk, TargetEvent, TrendDirection
from .ftp import FTPConfidence, FTPMethod, FTPPrediction, FTPPredictor, parse_method, should_notify

__all__ = [
    "CadenceAnalysis",
    "CadenceAnalyzer",
    "FatigueAnalyzer",
    "FatigueIndicators",
    "FatigueMonitor",
    "FatiguePhase",
    "FatigueSeverity",
    "FatigueState",
    "CTLForecast",
    "CTLForecaster",
    "DetrainingRisk",
    "TargetEvent",
    "TrendDirection",
    "FTPConfidence",
    "FTPMethod",
    "FTPPrediction",
    "FTPPredictor",
    "parse_method",
    "should_notify",
]
