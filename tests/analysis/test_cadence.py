"""Tests for cadence analysis."""

import pytest

from ride_insights.analysis.cadence import CadenceAnalyzer, DegradationType
from ride_insights.exceptions import InsufficientDataError
from ride_insights.models.ride import RideSample


def cadence_samples(cadence_at, seconds):
    return [
        RideSample(elapsed_seconds=float(t), power_watts=200.0, cadence_rpm=cadence_at(t))
        for t in range(seconds)
    ]


@pytest.fixture
def analyzer():
    return CadenceAnalyzer()


class TestCadenceAnalysis:

    def test_steady_optimal_cadence(self, analyzer):
        analysis = analyzer.analyze("ride-1", cadence_samples(lambda t: 90.0, 600))

        assert analysis.avg_cadence == pytest.approx(90.0)
        assert analysis.time_in_optimal == 1.0
        assert analysis.efficiency.label == "Excellent"
        assert analysis.degradation is None
        assert analysis.recommendations == ["Great cadence control! Keep up the good work."]

    def test_low_cadence_recommendation(self, analyzer):
        analysis = analyzer.analyze("ride-1", cadence_samples(lambda t: 70.0, 120))

        assert analysis.time_in_optimal == 0.0
        assert any("higher cadence" in tip for tip in analysis.recommendations)

    def test_gradual_decline_detected(self, analyzer):
        analysis = analyzer.analyze("ride-1", cadence_samples(lambda t: 95.0 - 25.0 * t / 900, 900))

        assert analysis.degradation is not None
        assert analysis.degradation.pattern_type == DegradationType.GRADUAL_DECLINE
        assert any("dropped late" in tip for tip in analysis.recommendations)

    def test_increasing_variability_detected(self, analyzer):
        def cadence(t):
            swing = 2.0 if t < 600 else 8.0
            return 90.0 + (swing if t % 2 else -swing)

        analysis = analyzer.analyze("ride-1", cadence_samples(cadence, 900))

        assert analysis.degradation.pattern_type == DegradationType.INCREASING_VARIABILITY

    def test_missing_cadence_readings_skipped(self, analyzer):
        samples = cadence_samples(lambda t: 90.0, 100)
        samples += [RideSample(elapsed_seconds=float(t), power_watts=200.0) for t in range(100, 200)]
        analysis = analyzer.analyze("ride-1", samples)

        assert analysis.avg_cadence == pytest.approx(90.0)

    def test_too_little_cadence_data(self, analyzer):
        with pytest.raises(InsufficientDataError):
            analyzer.analyze("ride-1", cadence_samples(lambda t: 90.0, 59))

    def test_to_dict(self, analyzer):
        data = analyzer.analyze("ride-1", cadence_samples(lambda t: 90.0, 120)).to_dict()

        assert data["ride_id"] == "ride-1"
        assert data["optimal_range"] == [85, 95]
        assert data["efficiency"]["label"] == "Excellent"
