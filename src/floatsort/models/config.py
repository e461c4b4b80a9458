"""Configuration model for floatsort.

The configuration is owned by an external layer (GUI, config file). The
monitor and scheduler only ever see a snapshot taken at start time, so edits
require a restart to take effect.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import ConfigurationError
from .rules import (
    ExtensionCondition,
    MoveToAction,
    Rule,
    rules_from_list,
)

logger = logging.getLogger(__name__)


class TriggerMode(Enum):
    """When a folder's files are evaluated."""
    IMMEDIATE = "immediate"
    MANUAL = "manual"
    ON_STARTUP = "on_startup"
    SCHEDULED = "scheduled"

    @property
    def is_event_driven(self) -> bool:
        return self in (TriggerMode.IMMEDIATE, TriggerMode.MANUAL)


class ScheduleType(Enum):
    INTERVAL = "interval"
    DAILY = "daily"
    WEEKLY = "weekly"


@dataclass(frozen=True)
class WatchFolder:
    """A directory configured for monitoring."""
    id: str
    path: Path
    name: str = ""
    enabled: bool = True
    rule_ids: List[str] = field(default_factory=list)
    trigger_mode: TriggerMode = TriggerMode.IMMEDIATE
    schedule_type: Optional[ScheduleType] = None
    schedule_interval_minutes: Optional[int] = None
    schedule_daily_time: Optional[str] = None
    schedule_weekly_day: Optional[int] = None  # 0=Sunday .. 6=Saturday
    schedule_weekly_time: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.path.name or str(self.path)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatchFolder":
        schedule_type = data.get("schedule_type")
        return cls(
            id=str(data["id"]),
            path=Path(data["path"]),
            name=data.get("name", ""),
            enabled=bool(data.get("enabled", True)),
            rule_ids=[str(r) for r in data.get("rule_ids", [])],
            trigger_mode=TriggerMode(data.get("trigger_mode", "immediate")),
            schedule_type=ScheduleType(schedule_type) if schedule_type else None,
            schedule_interval_minutes=data.get("schedule_interval_minutes"),
            schedule_daily_time=data.get("schedule_daily_time"),
            schedule_weekly_day=data.get("schedule_weekly_day"),
            schedule_weekly_time=data.get("schedule_weekly_time"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": str(self.path),
            "name": self.name,
            "enabled": self.enabled,
            "rule_ids": list(self.rule_ids),
            "trigger_mode": self.trigger_mode.value,
            "schedule_type": self.schedule_type.value if self.schedule_type else None,
            "schedule_interval_minutes": self.schedule_interval_minutes,
            "schedule_daily_time": self.schedule_daily_time,
            "schedule_weekly_day": self.schedule_weekly_day,
            "schedule_weekly_time": self.schedule_weekly_time,
        }


@dataclass(frozen=True)
class MonitorSettings:
    """Timing tunables for monitoring and scheduling (seconds)."""
    stability_delay: float = 1.0
    stability_checks: int = 3
    stability_check_interval: float = 0.5
    event_settle_delay: float = 0.5
    scan_pacing_delay: float = 0.1
    max_concurrent_checks: int = 8
    startup_scan_delay: float = 1.0
    schedule_retry_backoff: float = 60.0
    schedule_max_sleep: float = 60.0
    recent_output_window: float = 10.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorSettings":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class AppConfig:
    """Main configuration model."""
    folders: List[WatchFolder] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)
    settings: MonitorSettings = field(default_factory=MonitorSettings)

    @classmethod
    def default(cls) -> "AppConfig":
        """No folders and the two starter rules."""
        return cls(rules=default_rules())

    def snapshot(self) -> "AppConfig":
        """Independent copy for a monitoring session."""
        return copy.deepcopy(self)

    def enabled_folders(self) -> List[WatchFolder]:
        return [f for f in self.folders if f.enabled]

    def get_folder(self, folder_id: str) -> Optional[WatchFolder]:
        for folder in self.folders:
            if folder.id == folder_id:
                return folder
        return None

    def folder_for_path(self, path: Path) -> Optional[WatchFolder]:
        """Find the enabled folder whose root contains ``path``.

        The deepest root wins when folders are nested.
        """
        path = Path(path).absolute()
        best: Optional[WatchFolder] = None
        for folder in self.enabled_folders():
            root = folder.path.absolute()
            if path == root or root in path.parents:
                if best is None or len(root.parts) > len(best.path.absolute().parts):
                    best = folder
        return best

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        return cls(
            folders=[WatchFolder.from_dict(f) for f in data.get("folders", [])],
            rules=rules_from_list(data.get("rules", [])),
            settings=MonitorSettings.from_dict(data.get("settings", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "folders": [f.to_dict() for f in self.folders],
            "rules": [r.to_dict() for r in self.rules],
            "settings": self.settings.to_dict(),
        }


def default_rules() -> List[Rule]:
    """Starter rules written to fresh configurations."""
    return [
        Rule(
            id="rule_images",
            name="Images",
            conditions=(ExtensionCondition(("jpg", "jpeg", "png", "gif", "bmp", "svg")),),
            action=MoveToAction("Pictures"),
            priority=1,
        ),
        Rule(
            id="rule_documents",
            name="Documents",
            conditions=(ExtensionCondition(("pdf", "doc", "docx", "txt", "md")),),
            action=MoveToAction("Documents"),
            priority=2,
        ),
    ]


def load_config(config_path: Path) -> AppConfig:
    """Load and validate configuration from a JSON file.

    Raises:
        ConfigurationError: If the file is unreadable or fails validation.
    """
    from ..core.rule_schema import validate_config_data

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {e}") from e

    errors = validate_config_data(config_data)
    if errors:
        raise ConfigurationError(
            f"Invalid configuration {config_path}: " + "; ".join(errors)
        )

    try:
        config = AppConfig.from_dict(config_data)
    except (KeyError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid configuration {config_path}: {e}") from e

    logger.info(f"Loaded {len(config.folders)} folders and {len(config.rules)} rules from {config_path}")
    return config


def save_config(config: AppConfig, config_path: Path) -> None:
    """Save configuration to a JSON file."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)
    logger.info(f"Configuration saved to {config_path}")


def load_or_default(config_path: Path) -> AppConfig:
    """Load ``config_path``, writing the default configuration if it is missing."""
    config_path = Path(config_path)
    if config_path.exists():
        return load_config(config_path)

    logger.warning(f"Configuration {config_path} not found, using defaults")
    config = AppConfig.default()
    save_config(config, config_path)
    return config
