"""
Power-Duration Model.

The power-duration curve (PDC) holds, for each duration, the best average
power the athlete held across all rides inside a lookback window. It is a
pure read model: it answers queries and never changes the rides it was
built from.
"""

import logging
import math
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models.ride import PowerDurationPoint, RideSummary

logger = logging.getLogger(__name__)


# Standard mean-maximal-power durations, 1s to 5h
STANDARD_DURATIONS: Tuple[int, ...] = (
    1, 2, 3, 5, 10, 15, 20, 30,
    60, 120, 180, 300, 600, 900, 1200, 1800,
    2700, 3600, 5400, 7200, 10800, 14400, 18000,
)


def calculate_mmp(
    power_samples: Sequence[float],
    durations: Iterable[int] = STANDARD_DURATIONS,
) -> List[PowerDurationPoint]:
    """
    Extract mean maximal power for each duration from 1 Hz power samples.

    Durations longer than the sample stream are skipped.
    """
    n = len(power_samples)
    if n == 0:
        return []

    prefix_sum = [0.0] * (n + 1)
    for i, power in enumerate(power_samples):
        prefix_sum[i + 1] = prefix_sum[i] + power

    points = []
    for duration in sorted(set(durations)):
        if duration <= 0 or duration > n:
            continue
        best = max(
            prefix_sum[end] - prefix_sum[end - duration]
            for end in range(duration, n + 1)
        )
        points.append(PowerDurationPoint(duration_secs=duration, power_watts=round(best / duration, 1)))
    return points


class PowerDurationCurve:
    """Best power per duration across a set of rides."""

    def __init__(self, best: Optional[Dict[int, Tuple[float, str]]] = None):
        # duration -> (power, ride_id that set it)
        self._best: Dict[int, Tuple[float, str]] = dict(best or {})
        self._durations: List[int] = sorted(self._best)

    @classmethod
    def from_rides(
        cls,
        rides: Iterable[RideSummary],
        lookback_days: int = 90,
        as_of: Optional[date] = None,
    ) -> "PowerDurationCurve":
        """Build the curve from every ride dated within the lookback window."""
        as_of = as_of or date.today()
        window_start = as_of - timedelta(days=lookback_days)

        best: Dict[int, Tuple[float, str]] = {}
        used = 0
        for ride in rides:
            if not window_start <= ride.ride_date <= as_of:
                continue
            used += 1
            for point in ride.pdc_points:
                current = best.get(point.duration_secs)
                if current is None or point.power_watts > current[0]:
                    best[point.duration_secs] = (point.power_watts, ride.ride_id)

        logger.debug(f"Built power-duration curve from {used} rides ({len(best)} durations)")
        return cls(best)

    @classmethod
    def from_points(cls, points: Iterable[PowerDurationPoint], ride_id: str = "") -> "PowerDurationCurve":
        best: Dict[int, Tuple[float, str]] = {}
        for point in points:
            current = best.get(point.duration_secs)
            if current is None or point.power_watts > current[0]:
                best[point.duration_secs] = (point.power_watts, ride_id)
        return cls(best)

    @property
    def points(self) -> List[PowerDurationPoint]:
        return [PowerDurationPoint(d, self._best[d][0]) for d in self._durations]

    @property
    def max_duration(self) -> Optional[int]:
        return self._durations[-1] if self._durations else None

    def __len__(self) -> int:
        return len(self._durations)

    def is_empty(self) -> bool:
        return not self._durations

    def source_ride(self, duration_secs: int) -> Optional[str]:
        """Ride that set the best power at exactly this duration."""
        entry = self._best.get(duration_secs)
        return entry[1] if entry else None

    def query(self, duration_secs: int) -> Optional[float]:
        """
        Best power for a duration.

        Exact durations return their recorded power. Durations between two
        known points are interpolated on a log-duration scale. Durations with
        only one known neighbour (or an empty curve) return None; the curve
        never extrapolates.
        """
        if duration_secs in self._best:
            return self._best[duration_secs][0]

        shorter = [d for d in self._durations if d < duration_secs]
        longer = [d for d in self._durations if d > duration_secs]
        if not shorter or not longer or duration_secs <= 0:
            return None

        low, high = shorter[-1], longer[0]
        low_power, high_power = self._best[low][0], self._best[high][0]
        ratio = (math.log(duration_secs) - math.log(low)) / (math.log(high) - math.log(low))
        return round(low_power + ratio * (high_power - low_power), 1)

    def has_data_near(self, duration_secs: int, tolerance_secs: int) -> bool:
        """True if a recorded (not interpolated) point lies within tolerance."""
        return any(abs(d - duration_secs) <= tolerance_secs for d in self._durations)

    def power_at_actual(self, duration_secs: int, tolerance_secs: int) -> Optional[float]:
        """Query only when real data exists near the duration."""
        if not self.has_data_near(duration_secs, tolerance_secs):
            return None
        return self.query(duration_secs)

    def monotonic_violations(self) -> List[Tuple[PowerDurationPoint, PowerDurationPoint]]:
        """
        Adjacent point pairs where the longer duration shows more power.

        A real curve never rises with duration, so these point at bad sensor
        data or mismatched rides. They are reported, not removed.
        """
        points = self.points
        return [
            (shorter, longer)
            for shorter, longer in zip(points, points[1:])
            if longer.power_watts > shorter.power_watts
        ]

    @property
    def is_monotonic(self) -> bool:
        return not self.monotonic_violations()

    @property
    def confidence(self) -> float:
        """Share of adjacent point pairs that keep the decreasing shape."""
        if len(self._durations) < 2:
            return 1.0
        pairs = len(self._durations) - 1
        return round((pairs - len(self.monotonic_violations())) / pairs, 3)

    def to_dict(self) -> dict:
        return {
            "points": [p.to_dict() for p in self.points],
            "max_duration": self.max_duration,
            "is_monotonic": self.is_monotonic,
            "confidence": self.confidence,
        }
