"""Data models for floatsort."""

from .file_info import FileInfo
from .config import AppConfig, MonitorSettings, ScheduleType, TriggerMode, WatchFolder
from .rules import ConflictStrategy, Rule, RuleAction, RuleCondition

__all__ = [
    "FileInfo",
    "AppConfig",
    "MonitorSettings",
    "ScheduleType",
    "TriggerMode",
    "WatchFolder",
    "ConflictStrategy",
    "Rule",
    "RuleAction",
    "RuleCondition",
]
