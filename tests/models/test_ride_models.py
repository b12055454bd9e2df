"""Tests for ride, athlete and workout models."""

from datetime import date, datetime

import pytest

from ride_insights.exceptions import ValidationError
from ride_insights.models.athlete import AthleteBaseline, GoalType, TrainingGoal
from ride_insights.models.ride import (
    CTLPoint,
    PowerDurationPoint,
    RideSample,
    RideSummary,
    validate_ctl_series,
    validate_samples,
)
from ride_insights.models.workouts import CandidateWorkout, EnergySystem, WorkoutSource, union_pool


class TestRideSummary:

    def test_from_dict_accepts_datetime_strings(self):
        ride = RideSummary.from_dict({
            "ride_id": 17,
            "ride_date": "2024-06-01T07:30:00",
            "duration_seconds": "3600",
            "pdc_points": [{"duration_secs": 60, "power_watts": 400}],
        })

        assert ride.ride_id == "17"
        assert ride.ride_date == date(2024, 6, 1)
        assert ride.pdc_points == (PowerDurationPoint(60, 400.0),)

    def test_invalid_date(self):
        with pytest.raises(ValidationError):
            RideSummary.from_dict({"ride_id": "r", "ride_date": "yesterday"})

    def test_points_stored_as_tuple(self):
        ride = RideSummary("r", date(2024, 6, 1), 600, pdc_points=[PowerDurationPoint(60, 300)])
        assert isinstance(ride.pdc_points, tuple)

    def test_best_power_between(self):
        ride = RideSummary("r", date(2024, 6, 1), 3600, pdc_points=[
            PowerDurationPoint(300, 320),
            PowerDurationPoint(1200, 268),
            PowerDurationPoint(3600, 235),
        ])

        assert ride.best_power_between(1200).power_watts == 268
        assert ride.best_power_between(240, 1200).duration_secs == 300
        assert ride.best_power_between(7200) is None


class TestSamples:

    def test_strictly_increasing_required(self):
        samples = [RideSample(0.0), RideSample(1.0), RideSample(1.0)]
        with pytest.raises(ValidationError) as exc:
            validate_samples(samples)
        assert exc.value.details["index"] == 2

    def test_has_power_and_hr(self):
        assert RideSample(0.0, power_watts=200, heart_rate_bpm=140).has_power_and_hr
        assert not RideSample(0.0, power_watts=200).has_power_and_hr

    def test_from_dict_missing_sensors(self):
        sample = RideSample.from_dict({"elapsed_seconds": 5})
        assert sample.cadence_rpm is None


class TestCTLSeries:

    def test_acwr(self):
        assert CTLPoint(date(2024, 6, 1), ctl=50, atl=65).acwr == pytest.approx(1.3)
        assert CTLPoint(date(2024, 6, 1), ctl=0, atl=10).acwr is None

    def test_gaps_allowed_duplicates_rejected(self):
        validate_ctl_series([CTLPoint(date(2024, 6, 1), 50, 50), CTLPoint(date(2024, 6, 4), 51, 52)])
        with pytest.raises(ValidationError):
            validate_ctl_series([CTLPoint(date(2024, 6, 1), 50, 50), CTLPoint(date(2024, 6, 1), 51, 52)])

    def test_from_dict_defaults_tss(self):
        point = CTLPoint.from_dict({"date": datetime(2024, 6, 1, 5), "ctl": "60", "atl": 55, "tss": None})
        assert point.date == date(2024, 6, 1)
        assert point.tss == 0.0


class TestAthlete:

    def test_heart_rate_reserve(self):
        assert AthleteBaseline(resting_hr=50, max_hr=190).heart_rate_reserve == 140

    def test_goal_implied_systems(self):
        event = TrainingGoal("g1", GoalType.EVENT)
        focused = TrainingGoal("g2", GoalType.ENERGY_SYSTEM, energy_system=EnergySystem.VO2MAX)

        assert EnergySystem.THRESHOLD in event.implied_systems
        assert focused.implied_systems == frozenset({EnergySystem.VO2MAX})
        assert focused.display_name == "VO2max goal"

    def test_goal_from_dict(self):
        goal = TrainingGoal.from_dict({
            "goal_id": "g1",
            "goal_type": "event",
            "target_date": "2024-09-01",
            "title": "Gran Fondo",
        })
        assert goal.target_date == date(2024, 9, 1)
        assert goal.display_name == "Gran Fondo"


class TestCandidateWorkout:

    def test_from_dict_imported(self):
        workout = CandidateWorkout.from_dict({
            "workout_id": "imp-1",
            "energy_systems": ["vo2max", "endurance"],
            "duration_minutes": "55",
            "source": "user_import",
        })

        assert workout.title == "imp-1"
        assert workout.source == WorkoutSource.USER_IMPORT
        assert workout.is_high_intensity
        assert workout.to_dict()["energy_systems"] == ["endurance", "vo2max"]

    def test_list_of_systems_coerced(self):
        workout = CandidateWorkout("w", "W", ["recovery"], 30, 15, 1)
        assert workout.energy_systems == frozenset({EnergySystem.RECOVERY})
        assert not workout.is_high_intensity

    def test_frozenset_of_strings_coerced(self):
        workout = CandidateWorkout("w", "W", frozenset({"vo2max", "endurance"}), 60, 70, 8)

        assert workout.energy_systems == frozenset({EnergySystem.VO2MAX, EnergySystem.ENDURANCE})
        assert all(isinstance(e, EnergySystem) for e in workout.energy_systems)
        assert workout.is_high_intensity

    def test_union_pool_keeps_first(self):
        a = CandidateWorkout("w", "Built-in", [EnergySystem.TEMPO], 60, 50, 5)
        b = CandidateWorkout("w", "Imported", [EnergySystem.TEMPO], 60, 50, 5, source=WorkoutSource.USER_IMPORT)
        c = CandidateWorkout("x", "Other", [EnergySystem.TEMPO], 60, 50, 5)

        assert [w.title for w in union_pool([a], [b, c])] == ["Built-in", "Other"]
