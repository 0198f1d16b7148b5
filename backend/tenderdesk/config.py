"""Configuration management using Pydantic Settings."""

import logging
import os
import socket
import uuid
from datetime import datetime, tzinfo
from functools import lru_cache
from pathlib import Path
from typing import Callable, Literal
from zoneinfo import ZoneInfo

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def default_process_id() -> str:
    """Containers often share a pid, so include the host and a random suffix."""
    return f"{socket.gethostname()}_{os.getpid()}_{uuid.uuid4().hex[:8]}"


def parse_time_of_day(value: str) -> tuple[int, int]:
    """Parse an "HH:MM" string into (hour, minute)."""
    try:
        hour_str, minute_str = value.strip().split(":", 1)
        hour, minute = int(hour_str), int(minute_str)
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM") from e

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Time of day out of range: {value!r}")
    return hour, minute


class SnapshotConfig(BaseModel):
    """Daily snapshot scheduler and lock parameters."""

    default_time: str = "18:00"
    daily_reset_time: str = "06:52"  # Live-tracking writer resets counters here
    workday_minutes: int = 480
    retry_delay_minutes: int = 15
    cleanup_interval_minutes: int = 30
    initial_cleanup_delay_seconds: float = 2.0
    scheduled_run_delay_seconds: float = 2.0
    lock_recheck_delay_ms: int = 100
    lock_stale_after_seconds: int = 600
    drift_warning_seconds: float = 5.0
    holiday_weekdays: list[int] = Field(default_factory=lambda: [4])  # Friday

    @field_validator("default_time", "daily_reset_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        parse_time_of_day(v)
        return v

    @field_validator("holiday_weekdays")
    @classmethod
    def validate_weekdays(cls, v: list[int]) -> list[int]:
        for day in v:
            if not 0 <= day <= 6:
                raise ValueError(f"Weekday must be 0 (Monday) to 6 (Sunday), got {day}")
        return v


class KanbanConfig(BaseModel):
    """Kanban board priority thresholds (estimated value, SAR)."""

    high_priority_threshold: float = 750000
    medium_priority_threshold: float = 400000


class ActivityConfig(BaseModel):
    """Activity log retention."""

    max_activities: int = 100
    duplicate_window_seconds: float = 5.0


class PricingConfig(BaseModel):
    """Price study parameters."""

    vat_rate: float = 0.15


class ApiConfig(BaseModel):
    """HTTP API server parameters."""

    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")

    environment: Literal["development", "production", "test"] = "development"
    timezone: str = "Asia/Riyadh"

    # Document store
    store_backend: Literal["memory", "mongo"] = "memory"
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "tenderdesk"

    # Tenant and process identity
    company_id: str = ""
    process_id: str = Field(default_factory=default_process_id)

    logfire_token: str = ""

    # Nested configuration sections
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    kanban: KanbanConfig = Field(default_factory=KanbanConfig)
    activity: ActivityConfig = Field(default_factory=ActivityConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    @property
    def tzinfo(self) -> tzinfo:
        return ZoneInfo(self.timezone)

    def clock(self) -> datetime:
        """Current time in the configured local timezone."""
        return datetime.now(self.tzinfo)

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m tenderdesk init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in ["snapshot", "kanban", "activity", "pricing", "api"]:
                if section_name in yaml_config:
                    section = getattr(self, section_name)
                    yaml_section = yaml_config[section_name] or {}

                    section_dict = section.model_dump()
                    section_dict.update(yaml_section)

                    new_section = section.__class__(**section_dict)
                    setattr(self, section_name, new_section)

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
