from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CalendarAdapter(Enum):
    NONE = "none"
    HTTP = "http"


class SchedulingConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCHEDULING_", env_file=".env", extra="ignore")

    default_slot_minutes: int = Field(default=30, gt=0)
    waitlist_lead_days: int = Field(default=1, ge=0)
    waitlist_default_duration_minutes: int = Field(default=60, gt=0)


class CalendarConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CALENDAR_", env_file=".env", extra="ignore")

    adapter: CalendarAdapter = CalendarAdapter.NONE
    api_url: str = "https://www.googleapis.com/calendar/v3"
    calendar_id: str = "primary"
    token: str = ""
    timeout_seconds: float = 10.0


class NotificationConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="NOTIFY_", env_file=".env", extra="ignore")

    webhook_url: str = ""
    timeout_seconds: float = 5.0


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    clinic_timezone: str = "America/New_York"
    scheduling: SchedulingConfig = Field(default_factory=lambda: SchedulingConfig())
    calendar: CalendarConfig = Field(default_factory=lambda: CalendarConfig())
    notifications: NotificationConfig = Field(default_factory=lambda: NotificationConfig())
