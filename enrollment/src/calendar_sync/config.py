"""Calendar sync configuration.

Two layers, as elsewhere in the project:
- CalendarSyncSettings: environment variables (pydantic-settings), cached
- CalendarSyncConfig: YAML file validated with pydantic (calendar list, defaults)
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ViewMode


class CalendarSyncSettings(BaseSettings):
    """Environment configuration (prefix ``CALENDAR_``).

    NEVER hardcode credentials: tokens and provider secrets come from the
    environment only.
    """

    # REST boundary
    api_url: str = "http://localhost:4000/api"
    request_timeout_seconds: float = 30.0

    # Calendar defaults
    calendar_id: str = "primary"
    timezone: str = "Asia/Manila"
    refresh_interval_seconds: float = 60.0
    push_enabled: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Provider mirror
    mirror_retry_interval_minutes: int = 5
    database_url: str = ""
    redis_url: str = "redis://localhost:6379/0"
    google_credentials_json: str = ""
    google_token_path: str = "config/google_token.json"

    model_config = SettingsConfigDict(env_prefix="CALENDAR_", case_sensitive=False)


@lru_cache
def get_settings() -> CalendarSyncSettings:
    """Factory for calendar sync settings (cached singleton)."""
    return CalendarSyncSettings()


class CalendarSettings(BaseModel):
    """One calendar shown by the dashboard.

    Attributes:
        id: Provider calendar ID (e.g. 'primary')
        name: Human-readable calendar name
        color: Hex colour used for event chips
    """

    id: str = Field(..., description="Provider calendar ID")
    name: str = Field(..., description="Calendar display name")
    color: str = Field(default="#8a1d35", description="Calendar color (hex)")

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        """Validate color is a valid hex code."""
        if not v.startswith("#") or len(v) != 7:
            raise ValueError(f"color must be hex format #RRGGBB, got '{v}'")
        return v


class GridDefaults(BaseModel):
    """Initial grid state and refresh cadence."""

    view_mode: ViewMode = Field(default=ViewMode.MONTH, description="Initial view")
    refresh_interval_seconds: float = Field(
        default=60.0, gt=0, description="Silent refresh interval"
    )
    timezone: str = Field(default="Asia/Manila", description="Local zone for the grid")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the zone name is known to zoneinfo."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone '{v}'") from e
        return v


class CalendarSyncConfig(BaseModel):
    """Root YAML configuration.

    Attributes:
        calendars: Calendars the dashboard can display (first is the default)
        grid: Grid defaults
        push_enabled: Expose the manual "push to provider" action
    """

    calendars: List[CalendarSettings] = Field(
        ..., min_length=1, description="Calendars available to the grid"
    )
    grid: GridDefaults = Field(default_factory=GridDefaults, description="Grid defaults")
    push_enabled: bool = Field(default=False, description="Manual push action flag")

    @property
    def default_calendar_id(self) -> str:
        return self.calendars[0].id

    def calendar(self, calendar_id: Optional[str]) -> CalendarSettings:
        """Return the calendar with ``calendar_id``, or the default one."""
        for calendar in self.calendars:
            if calendar.id == calendar_id:
                return calendar
        return self.calendars[0]

    @classmethod
    def from_yaml(cls, path: str) -> "CalendarSyncConfig":
        """Load configuration from a YAML file.

        Args:
            path: Path to calendar_sync.yaml

        Returns:
            CalendarSyncConfig instance with validated settings

        Raises:
            FileNotFoundError: If the YAML file doesn't exist
            ValueError: If the YAML is empty or validation fails
        """
        yaml_path = Path(path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Calendar sync config file not found: {path}")

        with open(yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if not data:
            raise ValueError(f"Empty or invalid YAML file: {path}")

        return cls(**data)
