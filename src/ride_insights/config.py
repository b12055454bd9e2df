"""Configuration settings for the ride insights engine."""

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


PACKAGE_ROOT = Path(__file__).parent.parent.parent  # repository root

# Requests per day / per minute for each subscription plan of the inference service
PLAN_RATE_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"per_day": 50, "per_minute": 10},
    "pro": {"per_day": 500, "per_minute": 60},
}


class Settings(BaseSettings):
    """Engine settings loaded from environment variables (RIDE_INSIGHTS_*)."""

    # Remote inference service
    api_base_url: str = "https://api.rustride.io/v1"
    api_key: str = ""
    plan: str = "free"

    # Per-endpoint response-time budgets (seconds)
    ftp_timeout_seconds: float = 5.0
    fatigue_timeout_seconds: float = 2.0
    recommendations_timeout_seconds: float = 3.0
    forecast_timeout_seconds: float = 5.0
    cadence_timeout_seconds: float = 5.0
    health_timeout_seconds: float = 5.0

    # Offline queue / cache
    queue_max_size: int = 50
    retry_schedule_seconds: List[int] = [30, 60, 120, 300]
    cache_db_path: Optional[Path] = None
    retry_poll_seconds: float = 5.0

    # Power-duration model and FTP
    pdc_lookback_days: int = 90
    ftp_min_qualifying_rides: int = 5
    ftp_change_threshold_percent: float = 1.0

    # Fatigue detection
    fatigue_window_seconds: int = 600
    fatigue_cooldown_minutes: int = 5
    decoupling_multiplier: float = 2.0
    variability_multiplier: float = 1.15
    severe_overrides_cooldown: bool = False

    # Workout recommendations
    acwr_safe_low: float = 0.8
    acwr_safe_high: float = 1.3
    max_recommendations: int = 5

    # CTL forecasting
    forecast_trend_weeks: int = 8
    forecast_noise_threshold: float = 0.5

    @field_validator("fatigue_cooldown_minutes")
    @classmethod
    def _cooldown_in_range(cls, value: int) -> int:
        if not 5 <= value <= 10:
            raise ValueError("fatigue_cooldown_minutes must be between 5 and 10")
        return value

    @field_validator("retry_schedule_seconds")
    @classmethod
    def _schedule_non_decreasing(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("retry_schedule_seconds must not be empty")
        if any(later < earlier for earlier, later in zip(value, value[1:])):
            raise ValueError("retry_schedule_seconds must be non-decreasing")
        return value

    @field_validator("plan")
    @classmethod
    def _known_plan(cls, value: str) -> str:
        value = value.lower()
        if value not in PLAN_RATE_LIMITS:
            raise ValueError(f"Unknown plan '{value}', expected one of {sorted(PLAN_RATE_LIMITS)}")
        return value

    @property
    def rate_limits(self) -> Dict[str, int]:
        """Daily and per-minute request limits for the configured plan."""
        return PLAN_RATE_LIMITS[self.plan]

    class Config:
        env_prefix = "RIDE_INSIGHTS_"
        env_file = str(PACKAGE_ROOT / ".env")
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
