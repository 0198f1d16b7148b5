"""Local preference store with atomic writes to data/preferences.yaml."""

import logging
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from tenderdesk.config import parse_time_of_day
from tenderdesk.events import EventBus, TenderTrackingUpdated, TimerSettingsUpdated

logger = logging.getLogger(__name__)

TIMER_SETTINGS_KEY = "timer_scheduler_settings"
TRACKING_UPDATED_KEY = "tender_tracking_updated"


class TimerSettings(BaseModel):
    """Timer scheduler preferences shared with the live-tracking writer."""

    reset_time: str = "09:00"
    snapshot_time: str = "18:00"
    enable_auto_reset: bool = True
    enable_snapshot: bool = True

    @field_validator("reset_time", "snapshot_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        parse_time_of_day(v)
        return v


class PreferenceStore:
    """Key/value preferences persisted as a single YAML mapping."""

    def __init__(self, path: Path, bus: EventBus | None = None):
        self.path = path
        self.bus = bus

    def _load_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Corrupted preferences file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save_all(self, data: dict[str, Any]) -> None:
        """Write via tempfile -> rename so a crash never leaves a partial file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=self.path.parent,
                delete=False,
                suffix=".yaml",
                encoding="utf-8",
            ) as temp_file:
                temp_path = Path(temp_file.name)
                yaml.safe_dump(data, temp_file, allow_unicode=True, sort_keys=False)
            shutil.move(str(temp_path), str(self.path))
        except Exception as e:
            logger.error(f"Failed to save preferences: {e}")
            if temp_path and temp_path.exists():
                temp_path.unlink()
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._load_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load_all()
        data[key] = value
        self._save_all(data)

    def get_timer_settings(self) -> TimerSettings:
        raw = self.get(TIMER_SETTINGS_KEY)
        if not raw:
            return TimerSettings()
        try:
            return TimerSettings(**raw)
        except (TypeError, ValidationError) as e:
            logger.warning(f"Invalid timer settings in preferences, using defaults: {e}")
            return TimerSettings()

    def update_timer_settings(self, **changes: Any) -> TimerSettings:
        """Merge changes into the timer settings, persist, and broadcast them."""
        current = self.get_timer_settings().model_dump()
        current.update({k: v for k, v in changes.items() if v is not None})
        settings = TimerSettings(**current)
        self.set(TIMER_SETTINGS_KEY, settings.model_dump())
        logger.info(
            f"Timer settings updated: snapshot={settings.snapshot_time} "
            f"enabled={settings.enable_snapshot}"
        )
        if self.bus:
            self.bus.publish(TimerSettingsUpdated(**settings.model_dump()))
        return settings

    def record_tracking_update(self, event: TenderTrackingUpdated) -> None:
        """Bus handler: remember when tracking last changed so other clients can poll it."""
        self.set(TRACKING_UPDATED_KEY, event.updated_at.isoformat())

    def get_tracking_updated_at(self) -> datetime | None:
        raw = self.get(TRACKING_UPDATED_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except (TypeError, ValueError):
            return None
