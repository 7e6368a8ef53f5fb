import os
from datetime import date, timedelta
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from slot_booking.core.paths import resolve_repo_path


def _env_files() -> list[str]:
    base = resolve_repo_path("backend/.env")
    env = os.getenv("BOOKING_ENVIRONMENT", "").strip().lower()
    files = [str(base)]
    if env and env != "development":
        files.append(str(resolve_repo_path(f"backend/.env.{env}")))
    else:
        files.append(str(resolve_repo_path("backend/.env.local")))
    return files


class Settings(BaseSettings):
    app_name: str = "Interview Slot Booking"
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 8000

    database_url: str
    redis_url: str = ""

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_ttl_days: int = 7
    token_cookie_name: str = "token"

    booking_timezone: str = "Asia/Bangkok"
    slot_start_hour: int = 8
    slot_end_hour: int = 22
    slot_minutes: int = 10
    slot_gap_minutes: int = 5
    booking_dates: list[date] = Field(default_factory=list)
    first_booking_date: date | None = None
    booking_day_count: int = 6

    meeting_duration_minutes: int = 10
    meeting_topic_template: str = "Interview: {name} Tel: {phone}"

    meeting_provider: Literal["zoom", "google", "disabled"] = "zoom"
    zoom_account_id: str = ""
    zoom_client_id: str = ""
    zoom_client_secret: str = ""
    zoom_api_base_url: str = "https://api.zoom.us/v2"
    zoom_oauth_url: str = "https://zoom.us/oauth/token"
    provider_timeout_seconds: float = 10.0
    google_application_credentials: str = "secrets/google-service-account.json"
    calendar_id: str = "primary"
    calendar_subject_email: str = ""

    turnstile_secret_key: str = ""
    block_concurrent_sessions: bool = True
    presence_stale_minutes: int = 120
    auth_rate_limit_per_min: int = 30
    auth_rate_limit_window_seconds: int = 60

    internal_api_key: str = ""
    internal_api_allow_localhost: bool = True

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])

    model_config = SettingsConfigDict(env_prefix="BOOKING_", env_file=_env_files(), extra="ignore")

    def bookable_dates(self) -> list[date]:
        if self.booking_dates:
            return sorted(set(self.booking_dates))
        if self.first_booking_date is None:
            return []
        return [self.first_booking_date + timedelta(days=i) for i in range(max(self.booking_day_count, 0))]


settings = Settings()
