from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    # App
    app_name: str = "Kanban Approvals"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./kanban.db"
    database_echo: bool = False

    # Departments
    pc_department_code: str = "PC"
    department_seed_file: Optional[str] = None

    # Workflow
    transition_max_retries: int = Field(1, ge=0, le=5)
    max_batch_size: int = Field(50, ge=1)

    # Reports
    report_timezone: str = "UTC"
    report_timeout_seconds: Optional[float] = Field(30.0, gt=0)
    requester_report_limit: int = Field(20, ge=1)

    # Notifications
    notification_workers: int = Field(1, ge=1)
    audit_events_enabled: bool = True
    webhook_url: Optional[str] = None
    webhook_timeout: int = 30
    webhook_payload_template: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    log_file_enabled: bool = False
    log_console_enabled: bool = True

    @field_validator("report_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def report_tz(self) -> ZoneInfo:
        return ZoneInfo(self.report_timezone)

    model_config = SettingsConfigDict(
        env_prefix="KANBAN_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
