"""Training metrics calculations."""

from .pdc import STANDARD_DURATIONS, PowerDurationCurve, calculate_mmp
from .power import (
    FTP_DURATION_CLASSES,
    SIXTY_MINUTE,
    TWENTY_MINUTE,
    calculate_efficiency_factor,
    calculate_normalized_power,
    calculate_variability_index,
    estimate_ftp_from_effort,
    estimate_ftp_from_ramp_test,
    estimate_sample_rate,
    ftp_class_for_duration,
)

__all__ = [
    # Power-duration model
    "STANDARD_DURATIONS",
    "PowerDurationCurve",
    "calculate_mmp",
    # Power metrics
    "FTP_DURATION_CLASSES",
    "SIXTY_MINUTE",
    "TWENTY_MINUTE",
    "calculate_efficiency_factor",
    "calculate_normalized_power",
    "calculate_variability_index",
    "estimate_ftp_from_effort",
    "estimate_ftp_from_ramp_test",
    "estimate_sample_rate",
    "ftp_class_for_duration",
]
