"""Athlete profile data read by the analyzers."""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from .ride import _parse_date
from .workouts import EnergySystem


class GoalType(str, Enum):
    """Kinds of training goal an athlete can hold."""
    GENERAL_FITNESS = "general_fitness"
    EVENT = "event"
    ENERGY_SYSTEM = "energy_system"


# Energy systems each goal type implies when the goal names none explicitly
IMPLIED_SYSTEMS: Dict[GoalType, FrozenSet[EnergySystem]] = {
    GoalType.GENERAL_FITNESS: frozenset({
        EnergySystem.ENDURANCE,
        EnergySystem.SWEET_SPOT,
        EnergySystem.TEMPO,
    }),
    GoalType.EVENT: frozenset({
        EnergySystem.THRESHOLD,
        EnergySystem.VO2MAX,
        EnergySystem.ENDURANCE,
    }),
    GoalType.ENERGY_SYSTEM: frozenset(),
}


@dataclass(frozen=True)
class AthleteBaseline:
    """
    Slow-changing physiological reference owned by the athlete profile.

    Used to normalize in-ride fatigue signals.
    """
    resting_hr: int = 60
    max_hr: int = 185
    typical_aerobic_decoupling: float = 0.05  # fraction, e.g. 0.05 = 5% HR:power drift
    typical_power_variability: float = 1.05  # NP / avg power on a steady ride

    @property
    def heart_rate_reserve(self) -> int:
        return max(1, self.max_hr - self.resting_hr)

    def to_dict(self) -> dict:
        return {
            "resting_hr": self.resting_hr,
            "max_hr": self.max_hr,
            "typical_aerobic_decoupling": self.typical_aerobic_decoupling,
            "typical_power_variability": self.typical_power_variability,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AthleteBaseline":
        return cls(
            resting_hr=int(data.get("resting_hr", 60)),
            max_hr=int(data.get("max_hr", 185)),
            typical_aerobic_decoupling=float(data.get("typical_aerobic_decoupling", 0.05)),
            typical_power_variability=float(data.get("typical_power_variability", 1.05)),
        )


@dataclass(frozen=True)
class TrainingGoal:
    """A training goal. Priority 1 is the most important."""
    goal_id: str
    goal_type: GoalType
    priority: int = 1
    title: str = ""
    target_date: Optional[date] = None
    target_ctl: Optional[float] = None
    energy_system: Optional[EnergySystem] = None

    @property
    def implied_systems(self) -> FrozenSet[EnergySystem]:
        """Energy systems this goal wants trained."""
        if self.energy_system is not None:
            return frozenset({self.energy_system})
        return IMPLIED_SYSTEMS[self.goal_type]

    @property
    def display_name(self) -> str:
        if self.title:
            return self.title
        if self.energy_system is not None:
            return f"{self.energy_system.label} goal"
        return f"{self.goal_type.value.replace('_', ' ')} goal"

    def to_dict(self) -> dict:
        return {
            "goal_id": self.goal_id,
            "goal_type": self.goal_type.value,
            "priority": self.priority,
            "title": self.title,
            "target_date": self.target_date.isoformat() if self.target_date else None,
            "target_ctl": self.target_ctl,
            "energy_system": self.energy_system.value if self.energy_system else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainingGoal":
        return cls(
            goal_id=str(data["goal_id"]),
            goal_type=GoalType(data["goal_type"]),
            priority=int(data.get("priority", 1)),
            title=data.get("title", ""),
            target_date=_parse_date(data["target_date"]) if data.get("target_date") else None,
            target_ctl=data.get("target_ctl"),
            energy_system=EnergySystem(data["energy_system"]) if data.get("energy_system") else None,
        )
