"""Delivery layer: offline queue, prediction cache and athlete sessions."""

from .offline import OfflineQueue, PredictionCache, age_description
from .session import AthleteSession

__all__ = ["OfflineQueue", "PredictionCache", "AthleteSession", "age_description"]
