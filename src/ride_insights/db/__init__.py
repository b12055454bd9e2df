"""Persistence for cached predictions."""

from .prediction_cache_repository import PredictionCacheRepository

__all__ = ["PredictionCacheRepository"]
