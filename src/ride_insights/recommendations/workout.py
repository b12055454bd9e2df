"""
Workout Recommendation Engine

Ranks candidate workouts (built-in library and user imports alike) by a
weighted suitability score built from:
- Goal alignment: overlap with the energy systems the athlete's goals imply
- Recency gap: how long the workout's energy systems have gone untrained
- Load fit: whether the workout suits the current ACWR
- Novelty: whether the workout was just completed

Every recommendation carries an Evidence value breaking the score down
term by term, and the reasoning text is built from its dominant terms.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config import Settings, get_settings
from ..exceptions import ValidationError
from ..models.athlete import TrainingGoal
from ..models.evidence import DataSourceType, Evidence, EvidenceFactor, ImpactType
from ..models.workouts import EASY_SYSTEMS, CandidateWorkout, EnergySystem, WorkoutSource

logger = logging.getLogger(__name__)


WEIGHTS: Dict[str, float] = {
    "goal_alignment": 0.35,
    "recency_gap": 0.20,
    "load_fit": 0.25,
    "novelty": 0.20,
}

RECENCY_CAP_DAYS = 14
HIGH_TSS = 70.0

# Expected TSS that fully satisfies an undertrained athlete
UNDERTRAINED_TSS_TARGET = 100.0


class LoadStatus(str, Enum):
    UNDERTRAINED = "undertrained"
    OPTIMAL = "optimal"
    OVERREACHING = "overreaching"


def _built_in(workout_id, title, systems, minutes, tss, difficulty) -> CandidateWorkout:
    return CandidateWorkout(
        workout_id=workout_id,
        title=title,
        energy_systems=frozenset(systems),
        duration_minutes=minutes,
        expected_tss=tss,
        difficulty=difficulty,
        source=WorkoutSource.BUILT_IN,
    )


# Built-in workout library
BUILT_IN_LIBRARY: Tuple[CandidateWorkout, ...] = (
    _built_in("bi-recovery-spin", "Recovery Spin", [EnergySystem.RECOVERY], 30, 15, 1),
    _built_in("bi-endurance-60", "Endurance Hour", [EnergySystem.ENDURANCE], 60, 45, 3),
    _built_in("bi-endurance-120", "Long Endurance", [EnergySystem.ENDURANCE], 120, 90, 4),
    _built_in("bi-tempo-2x20", "Tempo 2x20", [EnergySystem.TEMPO, EnergySystem.ENDURANCE], 75, 70, 5),
    _built_in("bi-sweet-spot-3x12", "Sweet Spot 3x12", [EnergySystem.SWEET_SPOT], 60, 65, 6),
    _built_in("bi-threshold-2x15", "Threshold 2x15", [EnergySystem.THRESHOLD], 60, 75, 7),
    _built_in("bi-vo2-5x4", "VO2max 5x4", [EnergySystem.VO2MAX], 60, 72, 8),
    _built_in("bi-anaerobic-8x1", "Anaerobic 8x1", [EnergySystem.ANAEROBIC], 50, 60, 8),
    _built_in("bi-sprints", "Sprint Primer", [EnergySystem.NEUROMUSCULAR, EnergySystem.ENDURANCE], 45, 40, 6),
)


@dataclass
class RecommendedWorkout:
    """A ranked workout with its score breakdown."""
    workout: CandidateWorkout
    suitability_score: float
    reasoning: str
    evidence: Evidence
    goal_alignment: Optional[str] = None  # goal_id the workout serves best
    rank: int = 0

    @property
    def source(self) -> WorkoutSource:
        return self.workout.source

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "workout": self.workout.to_dict(),
            "source": self.source.value,
            "suitability_score": round(self.suitability_score, 3),
            "reasoning": self.reasoning,
            "goal_alignment": self.goal_alignment,
            "evidence": self.evidence.to_dict(),
        }


@dataclass
class WorkoutRecommendations:
    recommendations: List[RecommendedWorkout] = field(default_factory=list)
    training_gap: Optional[str] = None
    training_gap_system: Optional[EnergySystem] = None
    load_status: LoadStatus = LoadStatus.OPTIMAL
    acwr: Optional[float] = None
    excluded_for_time: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendations": [r.to_dict() for r in self.recommendations],
            "training_gap": self.training_gap,
            "training_gap_system": self.training_gap_system.value if self.training_gap_system else None,
            "load_status": self.load_status.value,
            "acwr": round(self.acwr, 2) if self.acwr is not None else None,
            "excluded_for_time": self.excluded_for_time,
        }


class WorkoutRecommender:
    """Scores and ranks candidate workouts for the next session."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def recommend(
        self,
        goals: Sequence[TrainingGoal],
        ctl: float,
        atl: float,
        available_minutes: int,
        candidates: Optional[Iterable[CandidateWorkout]] = None,
        recently_completed: Iterable[str] = (),
        days_since_trained: Optional[Mapping[EnergySystem, int]] = None,
        acwr: Optional[float] = None,
    ) -> WorkoutRecommendations:
        """
        Rank workouts that fit in the available time.

        Workouts longer than available_minutes are excluded outright, so a
        pool where nothing fits yields an empty list.

        Args:
            goals: Active training goals (priority 1 is most important)
            ctl: Chronic training load
            atl: Acute training load
            available_minutes: Time the athlete has for this session
            candidates: Workout pool; defaults to the built-in library
            recently_completed: workout_ids done recently
            days_since_trained: Days since each energy system was last trained;
                systems missing from the map count as never trained
            acwr: Acute:chronic workload ratio; derived from atl/ctl when omitted

        Raises:
            ValidationError: Negative time or load values.
        """
        if available_minutes < 0:
            raise ValidationError("available_minutes must not be negative", field="available_minutes")
        if ctl < 0 or atl < 0:
            raise ValidationError("ctl and atl must not be negative", field="ctl")

        if acwr is None and ctl > 0:
            acwr = atl / ctl
        load_status = self._load_status(acwr, atl)

        pool = list(BUILT_IN_LIBRARY if candidates is None else candidates)
        fitting = [w for w in pool if w.duration_minutes <= available_minutes]
        recent = set(recently_completed)
        days_map = {EnergySystem(system): days for system, days in (days_since_trained or {}).items()}
        ranked_goals = sorted(goals, key=lambda g: (g.priority, g.goal_id))

        scored = []
        for workout in fitting:
            scored.append(self._score(workout, ranked_goals, load_status, acwr, recent, days_map))

        scored.sort(key=lambda item: (-item[0].suitability_score, item[1], item[0].workout.workout_id))
        recommendations = [item[0] for item in scored[: self.settings.max_recommendations]]
        for rank, rec in enumerate(recommendations, start=1):
            rec.rank = rank

        gap_system, gap_text = self._training_gap(ranked_goals, days_map)
        logger.info(
            f"Recommended {len(recommendations)} of {len(pool)} workouts "
            f"({len(pool) - len(fitting)} too long, load {load_status.value})"
        )
        return WorkoutRecommendations(
            recommendations=recommendations,
            training_gap=gap_text,
            training_gap_system=gap_system,
            load_status=load_status,
            acwr=acwr,
            excluded_for_time=len(pool) - len(fitting),
        )

    def _load_status(self, acwr: Optional[float], atl: float) -> LoadStatus:
        if acwr is None:
            # No chronic load yet: any acute load is a spike
            return LoadStatus.OVERREACHING if atl > 0 else LoadStatus.UNDERTRAINED
        if acwr < self.settings.acwr_safe_low:
            return LoadStatus.UNDERTRAINED
        if acwr > self.settings.acwr_safe_high:
            return LoadStatus.OVERREACHING
        return LoadStatus.OPTIMAL

    def _score(
        self,
        workout: CandidateWorkout,
        goals: Sequence[TrainingGoal],
        load_status: LoadStatus,
        acwr: Optional[float],
        recent: set,
        days_map: Dict[EnergySystem, int],
    ) -> Tuple[RecommendedWorkout, float]:
        alignment, aligned_goal = self._goal_alignment(workout, goals)
        recency, stale_system, stale_days = self._recency_gap(workout, days_map)
        load_fit = self._load_fit(workout, load_status)
        novelty = 0.0 if workout.workout_id in recent else 1.0

        terms = {
            "goal_alignment": alignment,
            "recency_gap": recency,
            "load_fit": load_fit,
            "novelty": novelty,
        }
        score = sum(WEIGHTS[name] * value for name, value in terms.items())

        factors = [
            EvidenceFactor(
                name="goal_alignment",
                value=round(alignment, 3),
                display_value=aligned_goal.display_name if aligned_goal else "no matching goal",
                impact=ImpactType.POSITIVE if alignment > 0 else ImpactType.NEUTRAL,
                weight=WEIGHTS["goal_alignment"],
                contribution=WEIGHTS["goal_alignment"] * alignment,
                source=DataSourceType.TRAINING_GOALS,
            ),
            EvidenceFactor(
                name="recency_gap",
                value=stale_days,
                display_value=(
                    f"{stale_system.label}: never trained" if stale_system and stale_days is None
                    else f"{stale_system.label}: {stale_days} days" if stale_system
                    else "n/a"
                ),
                impact=ImpactType.POSITIVE if recency > 0 else ImpactType.NEUTRAL,
                weight=WEIGHTS["recency_gap"],
                contribution=WEIGHTS["recency_gap"] * recency,
                source=DataSourceType.RIDE_HISTORY,
                threshold=f"capped at {RECENCY_CAP_DAYS} days",
            ),
            EvidenceFactor(
                name="load_fit",
                value=round(acwr, 2) if acwr is not None else None,
                display_value=f"{load_status.value} load",
                impact=ImpactType.POSITIVE if load_fit >= 0.5 else ImpactType.NEGATIVE,
                weight=WEIGHTS["load_fit"],
                contribution=WEIGHTS["load_fit"] * load_fit,
                source=DataSourceType.TRAINING_LOAD,
                threshold=f"{self.settings.acwr_safe_low}-{self.settings.acwr_safe_high}",
            ),
            EvidenceFactor(
                name="novelty",
                value=novelty,
                display_value="new" if novelty else "recently completed",
                impact=ImpactType.POSITIVE if novelty else ImpactType.NEGATIVE,
                weight=WEIGHTS["novelty"],
                contribution=WEIGHTS["novelty"] * novelty,
                source=DataSourceType.WORKOUT_LIBRARY,
            ),
        ]
        evidence = Evidence(
            summary=f"{workout.title} scores {score:.2f}",
            factors=factors,
            references=[workout.workout_id] + ([aligned_goal.goal_id] if aligned_goal else []),
        )

        reasons = []
        for factor in evidence.dominant_factors(limit=2):
            reasons.append(self._explain(
                factor.name, workout, aligned_goal, stale_system, stale_days, load_status
            ))
        reasoning = "; ".join(reasons) if reasons else f"Fits your {workout.duration_minutes} available minutes"

        recommendation = RecommendedWorkout(
            workout=workout,
            suitability_score=round(score, 4),
            reasoning=reasoning,
            evidence=evidence,
            goal_alignment=aligned_goal.goal_id if aligned_goal else None,
        )
        tie_break = aligned_goal.priority if aligned_goal else float("inf")
        return recommendation, tie_break

    def _goal_alignment(
        self,
        workout: CandidateWorkout,
        goals: Sequence[TrainingGoal],
    ) -> Tuple[float, Optional[TrainingGoal]]:
        """Share of the workout's systems serving a goal, scaled by 1 / priority."""
        best_value, best_goal = 0.0, None
        if not workout.energy_systems:
            return best_value, best_goal
        for goal in goals:
            overlap = workout.energy_systems & goal.implied_systems
            if not overlap:
                continue
            value = len(overlap) / len(workout.energy_systems) / max(1, goal.priority)
            if value > best_value:
                best_value, best_goal = value, goal
        return min(1.0, best_value), best_goal

    def _recency_gap(
        self,
        workout: CandidateWorkout,
        days_map: Dict[EnergySystem, int],
    ) -> Tuple[float, Optional[EnergySystem], Optional[int]]:
        """Most neglected system the workout trains. Never trained counts as the cap."""
        best_value, best_system, best_days = 0.0, None, None
        for system in sorted(workout.energy_systems, key=lambda s: s.value):
            days = days_map.get(system)
            value = 1.0 if days is None else min(max(days, 0), RECENCY_CAP_DAYS) / RECENCY_CAP_DAYS
            if best_system is None or value > best_value:
                best_value, best_system, best_days = value, system, days
        return best_value, best_system, best_days

    def _load_fit(self, workout: CandidateWorkout, load_status: LoadStatus) -> float:
        if load_status == LoadStatus.OPTIMAL:
            return 1.0 if workout.is_high_intensity else 0.5
        if load_status == LoadStatus.OVERREACHING:
            if workout.expected_tss >= HIGH_TSS:
                return 0.0
            if workout.energy_systems and workout.energy_systems <= EASY_SYSTEMS:
                return 1.0
            return max(0.0, 1.0 - workout.expected_tss / HIGH_TSS)
        return min(1.0, max(0.0, workout.expected_tss / UNDERTRAINED_TSS_TARGET))

    def _explain(
        self,
        term: str,
        workout: CandidateWorkout,
        goal: Optional[TrainingGoal],
        stale_system: Optional[EnergySystem],
        stale_days: Optional[int],
        load_status: LoadStatus,
    ) -> str:
        if term == "goal_alignment" and goal is not None:
            systems = ", ".join(sorted(s.label for s in workout.energy_systems & goal.implied_systems))
            return f"Targets {systems} for your {goal.display_name}"
        if term == "recency_gap" and stale_system is not None:
            if stale_days is None:
                return f"{stale_system.label} hasn't been trained recently"
            return f"{stale_system.label} last trained {stale_days} days ago"
        if term == "load_fit":
            return {
                LoadStatus.OPTIMAL: "Training load is in the optimal range for quality work",
                LoadStatus.OVERREACHING: "Low-stress option while acute load is high",
                LoadStatus.UNDERTRAINED: "Adds training load while you are below your usual volume",
            }[load_status]
        if term == "novelty":
            return "Something different from your recent sessions"
        return workout.title

    def _training_gap(
        self,
        goals: Sequence[TrainingGoal],
        days_since_trained: Optional[Mapping[EnergySystem, int]],
    ) -> Tuple[Optional[EnergySystem], Optional[str]]:
        """Energy system with the longest time since training, as a narrative.

        Every tracked system is considered; goals only shape the wording.
        """
        if not days_since_trained:
            return None, None

        ordered = list(EnergySystem)
        tracked = sorted(days_since_trained, key=ordered.index)
        gap = max(tracked, key=lambda system: days_since_trained[system])
        days = days_since_trained[gap]
        text = f"{gap.label} hasn't been trained in {days} days"

        goal_systems = set()
        for goal in goals:
            goal_systems |= goal.implied_systems
        if goal_systems and gap not in goal_systems:
            text += " (not targeted by your current goals)"
        return gap, text
