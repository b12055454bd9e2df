"""Workout recommendations."""

from .workout import (
    BUILT_IN_LIBRARY,
    LoadStatus,
    RecommendedWorkout,
    WorkoutRecommendations,
    WorkoutRecommender,
)

__all__ = [
    "BUILT_IN_LIBRARY",
    "LoadStatus",
    "RecommendedWorkout",
    "WorkoutRecommendations",
    "WorkoutRecommender",
]
