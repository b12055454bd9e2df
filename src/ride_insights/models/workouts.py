"""Workout candidate models shared by the built-in library and user imports."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable


class EnergySystem(str, Enum):
    """Physiological training category targeted by a workout."""
    NEUROMUSCULAR = "neuromuscular"
    ANAEROBIC = "anaerobic"
    VO2MAX = "vo2max"
    THRESHOLD = "threshold"
    SWEET_SPOT = "sweet_spot"
    TEMPO = "tempo"
    ENDURANCE = "endurance"
    RECOVERY = "recovery"

    @property
    def label(self) -> str:
        labels = {
            EnergySystem.NEUROMUSCULAR: "Neuromuscular",
            EnergySystem.ANAEROBIC: "Anaerobic",
            EnergySystem.VO2MAX: "VO2max",
            EnergySystem.THRESHOLD: "Threshold",
            EnergySystem.SWEET_SPOT: "Sweet Spot",
            EnergySystem.TEMPO: "Tempo",
            EnergySystem.ENDURANCE: "Endurance",
            EnergySystem.RECOVERY: "Recovery",
        }
        return labels[self]

    @property
    def is_high_intensity(self) -> bool:
        return self in HIGH_INTENSITY_SYSTEMS


HIGH_INTENSITY_SYSTEMS: FrozenSet[EnergySystem] = frozenset({
    EnergySystem.NEUROMUSCULAR,
    EnergySystem.ANAEROBIC,
    EnergySystem.VO2MAX,
    EnergySystem.THRESHOLD,
})

EASY_SYSTEMS: FrozenSet[EnergySystem] = frozenset({
    EnergySystem.ENDURANCE,
    EnergySystem.RECOVERY,
})


class WorkoutSource(str, Enum):
    """Where a candidate workout came from. Echoed in output only."""
    BUILT_IN = "built_in"
    USER_IMPORT = "user_import"

    @property
    def label(self) -> str:
        return "Built-in" if self is WorkoutSource.BUILT_IN else "Imported"


@dataclass(frozen=True)
class CandidateWorkout:
    """
    A scoreable workout from either the built-in library or a user import.

    Both sources expose the same capability set, so the recommender treats
    them uniformly and only echoes `source` back to the caller.
    """
    workout_id: str
    title: str
    energy_systems: FrozenSet[EnergySystem]
    duration_minutes: int
    expected_tss: float
    difficulty: float  # 1-10
    source: WorkoutSource = WorkoutSource.BUILT_IN
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        object.__setattr__(
            self, "energy_systems", frozenset(EnergySystem(e) for e in self.energy_systems)
        )

    @property
    def is_high_intensity(self) -> bool:
        return any(e.is_high_intensity for e in self.energy_systems)

    def to_dict(self) -> dict:
        return {
            "workout_id": self.workout_id,
            "title": self.title,
            "source": self.source.value,
            "energy_systems": sorted(e.value for e in self.energy_systems),
            "duration_minutes": self.duration_minutes,
            "expected_tss": self.expected_tss,
            "difficulty": self.difficulty,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateWorkout":
        return cls(
            workout_id=str(data["workout_id"]),
            title=data.get("title", str(data["workout_id"])),
            energy_systems=frozenset(EnergySystem(e) for e in data.get("energy_systems", [])),
            duration_minutes=int(data["duration_minutes"]),
            expected_tss=float(data.get("expected_tss", 0.0)),
            difficulty=float(data.get("difficulty", 5.0)),
            source=WorkoutSource(data.get("source", WorkoutSource.BUILT_IN.value)),
        )


def union_pool(*pools: Iterable[CandidateWorkout]) -> list:
    """Merge candidate pools, keeping the first occurrence of each workout_id."""
    seen = set()
    merged = []
    for pool in pools:
        for workout in pool:
            if workout.workout_id in seen:
                continue
            seen.add(workout.workout_id)
            merged.append(workout)
    return merged
