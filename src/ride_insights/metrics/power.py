"""Cycling power metrics calculations (NP, VI, EF, FTP estimation rules)."""

from typing import Dict, List, Optional, Sequence


# Duration classes a sustained effort can belong to when estimating FTP.
# Each maps to (minimum duration, exclusive maximum duration, coefficient).
SIXTY_MINUTE = "sixty_minute"
TWENTY_MINUTE = "twenty_minute"

FTP_DURATION_CLASSES: Dict[str, Dict[str, Optional[float]]] = {
    SIXTY_MINUTE: {"min_secs": 3600, "max_secs": None, "coefficient": 1.00},
    TWENTY_MINUTE: {"min_secs": 1200, "max_secs": 3600, "coefficient": 0.95},
}

# Shortest effort that can qualify a ride for FTP estimation
MIN_QUALIFYING_DURATION_SECS = 1200

RAMP_TEST_COEFFICIENT = 0.75


def calculate_normalized_power(power_samples: Sequence[float], sample_rate_hz: float = 1.0) -> float:
    """
    Calculate Normalized Power (NP) using 30-second rolling average.

    NP accounts for the physiological cost of variable power output.
    It uses a 30-second rolling average, then takes the 4th power mean.

    Formula: NP = (mean(rolling_30s_power^4))^0.25

    Args:
        power_samples: Power values in watts (one per sample)
        sample_rate_hz: Sample rate in Hz (samples per second), default 1

    Returns:
        Normalized Power in watts, or 0.0 if insufficient data
    """
    if not power_samples:
        return 0.0

    window_size = max(1, int(round(30 * sample_rate_hz)))

    if len(power_samples) < window_size:
        # Short windows fall back to a single average, but only with
        # at least a few seconds of data
        if len(power_samples) < 3 * sample_rate_hz:
            return 0.0
        window_size = len(power_samples)

    # Running sum keeps the rolling average linear in the sample count
    rolling_averages: List[float] = []
    window_sum = sum(power_samples[:window_size])
    rolling_averages.append(window_sum / window_size)
    for i in range(window_size, len(power_samples)):
        window_sum += power_samples[i] - power_samples[i - window_size]
        rolling_averages.append(window_sum / window_size)

    fourth_power_mean = sum(avg ** 4 for avg in rolling_averages) / len(rolling_averages)
    return round(fourth_power_mean ** 0.25, 1)


def calculate_variability_index(normalized_power: float, avg_power: float) -> float:
    """
    Calculate Variability Index (VI).

    VI indicates how variable the power output was during the workout.
    VI = 1.0 means perfectly steady power (NP = Avg Power).

    Typical values:
    - <1.05: Very steady (time trial, indoor trainer)
    - 1.05-1.15: Moderate variability (road race, group ride)
    - >1.15: High variability (criterium, surging)

    Returns:
        Variability Index (dimensionless ratio), 0.0 when avg_power is not positive
    """
    if avg_power <= 0:
        return 0.0

    return round(normalized_power / avg_power, 3)


def calculate_efficiency_factor(power: float, heart_rate: float) -> float:
    """
    Calculate Efficiency Factor (EF): watts produced per heartbeat.

    Formula: EF = Power / HR
    """
    if heart_rate <= 0:
        return 0.0

    return power / heart_rate


def estimate_sample_rate(elapsed_seconds: Sequence[float]) -> float:
    """Average samples per second over a sequence of timestamps."""
    if len(elapsed_seconds) < 2:
        return 1.0
    span = elapsed_seconds[-1] - elapsed_seconds[0]
    if span <= 0:
        return 1.0
    return (len(elapsed_seconds) - 1) / span


def ftp_class_for_duration(duration_secs: int) -> Optional[str]:
    """Return the FTP duration class an effort of this length falls into."""
    for name, rule in FTP_DURATION_CLASSES.items():
        max_secs = rule["max_secs"]
        if duration_secs >= rule["min_secs"] and (max_secs is None or duration_secs < max_secs):
            return name
    return None


def estimate_ftp_from_effort(power_watts: float, duration_class: str) -> float:
    """
    Estimate FTP from a sustained effort.

    A 60-minute effort is taken at face value; a 20-minute effort gets the
    standard 5% reduction.
    """
    if power_watts <= 0:
        return 0.0

    return FTP_DURATION_CLASSES[duration_class]["coefficient"] * power_watts


def estimate_ftp_from_ramp_test(max_1min_power: float) -> float:
    """
    Estimate FTP from ramp test (MAP test).

    Formula: FTP = 0.75 * Max 1-minute power
    """
    if max_1min_power <= 0:
        return 0.0

    return RAMP_TEST_COEFFICIENT * max_1min_power
