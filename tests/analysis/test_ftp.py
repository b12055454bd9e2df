"""Tests for FTP prediction."""

from datetime import date, timedelta

import pytest

from ride_insights.analysis.ftp import (
    FTPConfidence,
    FTPMethod,
    FTPPredictor,
    parse_method,
    should_notify,
)
from ride_insights.exceptions import InsufficientDataError, ValidationError
from ride_insights.models.ride import PowerDurationPoint, RideSummary


AS_OF = date(2024, 6, 30)


def make_ride(ride_id, days_ago, points):
    return RideSummary(
        ride_id=ride_id,
        ride_date=AS_OF - timedelta(days=days_ago),
        duration_seconds=max(d for d, _ in points),
        pdc_points=[PowerDurationPoint(d, p) for d, p in points],
    )


@pytest.fixture
def history():
    """Five qualifying rides: one hour at 235W, twenty minutes at 268W, three easier rides.

    The hour effort alone gives 235W. The 255W prediction comes from the
    268W twenty-minute ride through the 95% coefficient (268 * 0.95 = 254.6),
    which auto picks as the highest estimate.
    """
    return [
        make_ride("hour", 3, [(60, 400), (1200, 250), (3600, 235)]),
        make_ride("twenty", 10, [(60, 420), (300, 320), (1200, 268)]),
        make_ride("easy-1", 20, [(1200, 240)]),
        make_ride("easy-2", 30, [(1200, 238)]),
        make_ride("easy-3", 40, [(1200, 236)]),
    ]


@pytest.fixture
def predictor(settings):
    return FTPPredictor(settings)


class TestFTPScenario:
    """Five rides, one with a 3600s point at 235W, current FTP 250."""

    def test_predicted_ftp(self, predictor, history):
        prediction = predictor.predict(history, current_ftp=250, as_of=AS_OF)

        assert prediction.predicted_ftp == 255
        assert prediction.method == FTPMethod.AUTO
        assert prediction.difference_percent == 2.0
        assert prediction.differs_from_current is True

    def test_supporting_efforts_reference_history(self, predictor, history):
        prediction = predictor.predict(history, current_ftp=250, as_of=AS_OF)
        ride_ids = {r.ride_id for r in history}

        assert prediction.supporting_efforts
        assert all(e.ride_id in ride_ids for e in prediction.supporting_efforts)
        assert prediction.supporting_efforts[0].ride_id == "twenty"
        assert set(prediction.evidence.references) <= ride_ids

    def test_single_supporting_ride_gives_medium_confidence(self, predictor, history):
        prediction = predictor.predict(history, as_of=AS_OF)

        assert prediction.confidence == FTPConfidence.MEDIUM
        assert prediction.confidence_lower == pytest.approx(255 * 0.6)
        assert prediction.confidence_upper == pytest.approx(255 * 1.4)

    def test_corroborated_estimate_is_high_confidence(self, predictor):
        rides = [make_ride(f"r{i}", i + 1, [(1200, 268 - i)]) for i in range(5)]
        prediction = predictor.predict(rides, as_of=AS_OF)

        assert prediction.confidence == FTPConfidence.HIGH
        assert len({e.ride_id for e in prediction.supporting_efforts}) >= 2

    def test_no_current_ftp(self, predictor, history):
        prediction = predictor.predict(history, as_of=AS_OF)

        assert prediction.current_ftp is None
        assert prediction.difference_percent is None
        assert prediction.differs_from_current is False

    def test_to_dict(self, predictor, history):
        data = predictor.predict(history, current_ftp=250, as_of=AS_OF).to_dict()

        assert data["predicted_ftp"] == 255
        assert data["method"] == "auto"
        assert data["computed_on"] == "2024-06-30"
        assert data["evidence"]["summary"].startswith("FTP 255W")


class TestQualifyingBoundary:

    def test_four_qualifying_rides_insufficient(self, predictor, history):
        with pytest.raises(InsufficientDataError) as exc_info:
            predictor.predict(history[:4], as_of=AS_OF)

        assert exc_info.value.details["qualifying_rides"] == 4

    def test_five_qualifying_rides_succeed(self, predictor, history):
        assert predictor.predict(history[:5], as_of=AS_OF).predicted_ftp > 0

    def test_rides_outside_lookback_do_not_qualify(self, predictor, history):
        stale = history[:4] + [make_ride("old", 120, [(3600, 300)])]
        with pytest.raises(InsufficientDataError):
            predictor.predict(stale, as_of=AS_OF)

    def test_short_efforts_do_not_qualify(self, predictor, history):
        rides = history[:4] + [make_ride("sprint", 1, [(60, 600), (300, 350)])]
        with pytest.raises(InsufficientDataError):
            predictor.predict(rides, as_of=AS_OF)


class TestMethods:

    def test_extended_duration_prefers_hour_effort(self, predictor, history):
        prediction = predictor.predict(history, preferred_method="extended_duration", as_of=AS_OF)

        assert prediction.predicted_ftp == 235
        assert prediction.supporting_efforts[0].ride_id == "hour"

    def test_extended_duration_falls_back_to_twenty_minutes(self, predictor, history):
        rides = history[1:] + [make_ride("tempo", 2, [(1200, 230)])]
        prediction = predictor.predict(rides, preferred_method=FTPMethod.EXTENDED_DURATION, as_of=AS_OF)

        assert prediction.predicted_ftp == 255

    def test_twenty_minute_method(self, predictor, history):
        prediction = predictor.predict(history, preferred_method="twenty_minute", as_of=AS_OF)
        assert prediction.predicted_ftp == 255

    def test_ramp_method_low_confidence(self, predictor, history):
        prediction = predictor.predict(history, preferred_method="ramp", as_of=AS_OF)

        assert prediction.predicted_ftp == 315
        assert prediction.confidence == FTPConfidence.LOW

    def test_unknown_method(self, predictor, history):
        with pytest.raises(ValidationError):
            predictor.predict(history, preferred_method="magic", as_of=AS_OF)

    def test_parse_method_case_insensitive(self):
        assert parse_method("RAMP") == FTPMethod.RAMP

    def test_non_positive_current_ftp(self, predictor, history):
        with pytest.raises(ValidationError):
            predictor.predict(history, current_ftp=0, as_of=AS_OF)


class TestShouldNotify:

    def test_small_change_not_notified(self, predictor, history):
        prediction = predictor.predict(history, current_ftp=250, as_of=AS_OF)
        assert should_notify(prediction) is False

    def test_large_change_notified(self, predictor, history):
        prediction = predictor.predict(history, current_ftp=230, as_of=AS_OF)
        assert should_notify(prediction) is True

    def test_low_confidence_not_notified(self, predictor, history):
        prediction = predictor.predict(history, current_ftp=250, preferred_method="ramp", as_of=AS_OF)
        assert should_notify(prediction) is False
