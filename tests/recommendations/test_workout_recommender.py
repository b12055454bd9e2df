"""Tests for the workout recommendation engine."""

import pytest

from ride_insights.exceptions import ValidationError
from ride_insights.models.athlete import GoalType, TrainingGoal
from ride_insights.models.workouts import (
    CandidateWorkout,
    EnergySystem,
    WorkoutSource,
    union_pool,
)
from ride_insights.recommendations.workout import (
    BUILT_IN_LIBRARY,
    WEIGHTS,
    LoadStatus,
    WorkoutRecommender,
)


def workout(workout_id, systems, minutes=60, tss=60, source=WorkoutSource.BUILT_IN):
    return CandidateWorkout(
        workout_id=workout_id,
        title=workout_id.replace("-", " ").title(),
        energy_systems=frozenset(systems),
        duration_minutes=minutes,
        expected_tss=tss,
        difficulty=5,
        source=source,
    )


EVENT_GOAL = TrainingGoal(goal_id="race", goal_type=GoalType.EVENT, priority=1, title="Gran Fondo")
FITNESS_GOAL = TrainingGoal(goal_id="fit", goal_type=GoalType.GENERAL_FITNESS, priority=2)


@pytest.fixture
def recommender(settings):
    return WorkoutRecommender(settings)


class TestTimeFilter:

    def test_nothing_fits_gives_empty_list(self, recommender):
        pool = [workout("long-1", [EnergySystem.ENDURANCE], minutes=120),
                workout("long-2", [EnergySystem.THRESHOLD], minutes=90)]
        result = recommender.recommend([EVENT_GOAL], ctl=60, atl=60, available_minutes=45, candidates=pool)

        assert result.recommendations == []
        assert result.excluded_for_time == 2

    def test_only_fitting_workouts_ranked(self, recommender):
        result = recommender.recommend([EVENT_GOAL], ctl=60, atl=60, available_minutes=60)

        assert result.recommendations
        assert all(r.workout.duration_minutes <= 60 for r in result.recommendations)

    def test_negative_minutes_rejected(self, recommender):
        with pytest.raises(ValidationError):
            recommender.recommend([EVENT_GOAL], ctl=60, atl=60, available_minutes=-1)


class TestScoring:

    def test_goal_aligned_intensity_ranks_first_at_optimal_load(self, recommender):
        pool = [
            workout("tempo", [EnergySystem.TEMPO]),
            workout("threshold", [EnergySystem.THRESHOLD], tss=75),
        ]
        result = recommender.recommend([EVENT_GOAL], ctl=60, atl=60, available_minutes=60, candidates=pool)

        assert result.load_status == LoadStatus.OPTIMAL
        top = result.recommendations[0]
        assert top.workout.workout_id == "threshold"
        assert top.rank == 1
        assert top.suitability_score == pytest.approx(1.0)
        assert top.goal_alignment == "race"
        assert result.recommendations[1].suitability_score == pytest.approx(0.525)

    def test_evidence_contributions_sum_to_score(self, recommender):
        result = recommender.recommend([EVENT_GOAL], ctl=60, atl=60, available_minutes=90)

        for rec in result.recommendations:
            factors = rec.evidence.factors
            assert {f.name for f in factors} == set(WEIGHTS)
            assert sum(f.contribution for f in factors) == pytest.approx(rec.suitability_score, abs=1e-3)
            assert rec.reasoning

    def test_overreaching_favours_easy_work(self, recommender):
        pool = [
            workout("vo2", [EnergySystem.VO2MAX], tss=72),
            workout("spin", [EnergySystem.RECOVERY], minutes=30, tss=15),
        ]
        result = recommender.recommend([], ctl=50, atl=80, available_minutes=60, candidates=pool)

        assert result.load_status == LoadStatus.OVERREACHING
        assert [r.workout.workout_id for r in result.recommendations] == ["spin", "vo2"]
        vo2_load = next(f for f in result.recommendations[1].evidence.factors if f.name == "load_fit")
        assert vo2_load.contribution == 0.0

    def test_acute_load_without_chronic_is_overreaching(self, recommender):
        result = recommender.recommend([], ctl=0, atl=10, available_minutes=60)
        assert result.load_status == LoadStatus.OVERREACHING

    def test_no_load_is_undertrained(self, recommender):
        result = recommender.recommend([], ctl=0, atl=0, available_minutes=60)
        assert result.load_status == LoadStatus.UNDERTRAINED

    def test_recently_completed_penalised(self, recommender):
        pool = [workout("a", [EnergySystem.ENDURANCE]), workout("b", [EnergySystem.ENDURANCE])]
        result = recommender.recommend(
            [FITNESS_GOAL], ctl=60, atl=60, available_minutes=60,
            candidates=pool, recently_completed=["a"],
        )
        scores = {r.workout.workout_id: r.suitability_score for r in result.recommendations}

        assert scores["b"] - scores["a"] == pytest.approx(WEIGHTS["novelty"])

    def test_equal_scores_tie_break_on_id(self, recommender):
        pool = [workout("b-ride", [EnergySystem.TEMPO]), workout("a-ride", [EnergySystem.TEMPO])]
        result = recommender.recommend([], ctl=60, atl=60, available_minutes=60, candidates=pool)

        assert [r.workout.workout_id for r in result.recommendations] == ["a-ride", "b-ride"]

    def test_recency_gap_prefers_neglected_system(self, recommender):
        pool = [workout("ss", [EnergySystem.SWEET_SPOT]), workout("tempo", [EnergySystem.TEMPO])]
        result = recommender.recommend(
            [FITNESS_GOAL], ctl=60, atl=60, available_minutes=60, candidates=pool,
            days_since_trained={EnergySystem.SWEET_SPOT: 14, EnergySystem.TEMPO: 1},
        )
        assert result.recommendations[0].workout.workout_id == "ss"

    def test_list_capped(self, recommender, settings):
        result = recommender.recommend([EVENT_GOAL], ctl=60, atl=60, available_minutes=180)

        assert len(result.recommendations) == settings.max_recommendations
        assert [r.rank for r in result.recommendations] == list(range(1, settings.max_recommendations + 1))


class TestWorkoutPool:

    def test_imported_workouts_scored_like_built_in(self, recommender):
        imported = workout("my-threshold", [EnergySystem.THRESHOLD], tss=75, source=WorkoutSource.USER_IMPORT)
        pool = union_pool(BUILT_IN_LIBRARY, [imported])
        result = recommender.recommend([EVENT_GOAL], ctl=60, atl=60, available_minutes=60, candidates=pool)

        by_id = {r.workout.workout_id: r for r in result.recommendations}
        assert by_id["my-threshold"].source == WorkoutSource.USER_IMPORT
        assert by_id["my-threshold"].suitability_score == by_id["bi-threshold-2x15"].suitability_score

    def test_union_keeps_first_occurrence(self):
        duplicate = workout("bi-recovery-spin", [EnergySystem.RECOVERY], source=WorkoutSource.USER_IMPORT)
        pool = union_pool(BUILT_IN_LIBRARY, [duplicate])

        assert len(pool) == len(BUILT_IN_LIBRARY)
        assert next(w for w in pool if w.workout_id == "bi-recovery-spin").source == WorkoutSource.BUILT_IN


class TestTrainingGap:

    def test_longest_untrained_goal_system(self, recommender):
        result = recommender.recommend(
            [FITNESS_GOAL], ctl=60, atl=60, available_minutes=60,
            days_since_trained={
                EnergySystem.ENDURANCE: 2,
                EnergySystem.SWEET_SPOT: 10,
                EnergySystem.TEMPO: 5,
            },
        )

        assert result.training_gap_system == EnergySystem.SWEET_SPOT
        assert result.training_gap == "Sweet Spot hasn't been trained in 10 days"

    def test_gap_outside_goals_still_reported(self, recommender):
        result = recommender.recommend(
            [EVENT_GOAL], ctl=60, atl=60, available_minutes=60,
            days_since_trained={
                EnergySystem.THRESHOLD: 2,
                EnergySystem.VO2MAX: 5,
                EnergySystem.ENDURANCE: 1,
                EnergySystem.ANAEROBIC: 45,
            },
        )

        assert result.training_gap_system == EnergySystem.ANAEROBIC
        assert result.training_gap.startswith("Anaerobic hasn't been trained in 45 days")

    def test_no_history_no_gap(self, recommender):
        result = recommender.recommend([FITNESS_GOAL], ctl=60, atl=60, available_minutes=60)
        assert result.training_gap is None

    def test_to_dict(self, recommender):
        data = recommender.recommend([EVENT_GOAL], ctl=60, atl=60, available_minutes=60).to_dict()

        assert data["load_status"] == "optimal"
        assert data["acwr"] == 1.0
        assert data["recommendations"][0]["rank"] == 1
