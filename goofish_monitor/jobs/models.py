"""Per-user monitoring settings and session status."""
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class SessionStatus(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


class UserSettings(BaseModel):
    """Polling settings of one user. Out-of-range numbers are clamped, not rejected."""

    check_interval: int = Field(default=300, description="Seconds between iterations")
    max_age_minutes: int = Field(default=1440, description="Ignore listings older than this")
    max_pages: int = Field(default=3, description="Result pages per query")
    rows_per_page: int = Field(default=100)
    notify_new_only: bool = Field(default=True, description="Skip listings already delivered")
    delay_between_requests_ms: int = Field(default=2000)

    @field_validator("check_interval")
    @classmethod
    def clamp_check_interval(cls, v: int) -> int:
        return _clamp(v, 10, 3600)

    @field_validator("max_age_minutes")
    @classmethod
    def clamp_max_age(cls, v: int) -> int:
        return _clamp(v, 1, 10080)

    @field_validator("max_pages")
    @classmethod
    def clamp_max_pages(cls, v: int) -> int:
        return _clamp(v, 1, 50)

    @field_validator("rows_per_page")
    @classmethod
    def clamp_rows_per_page(cls, v: int) -> int:
        return _clamp(v, 10, 1000)

    @field_validator("delay_between_requests_ms")
    @classmethod
    def non_negative_delay(cls, v: int) -> int:
        return max(0, int(v))

    @property
    def delay_seconds(self) -> float:
        return self.delay_between_requests_ms / 1000
