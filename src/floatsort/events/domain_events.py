"""
Domain Events - what happened to a detected file.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .event_bus import DomainEvent


@dataclass(kw_only=True)
class FileDetected(DomainEvent):
    """A stable file was signalled by the monitor or the scheduler."""
    file_path: str
    folder_id: Optional[str] = None

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "folder_id": self.folder_id,
        }


@dataclass(kw_only=True)
class FileOrganized(DomainEvent):
    """A rule action changed the filesystem."""
    original_path: str
    new_path: Optional[str]
    rule_name: str
    operation: str  # moved, copied, renamed, deleted, trashed

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "original_path": self.original_path,
            "new_path": self.new_path,
            "rule_name": self.rule_name,
            "operation": self.operation,
        }


@dataclass(kw_only=True)
class FileSkipped(DomainEvent):
    """A file was left in place: no matching rule, or a conflict skip."""
    file_path: str
    reason: str
    rule_name: Optional[str] = None

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "reason": self.reason,
            "rule_name": self.rule_name,
        }


@dataclass(kw_only=True)
class FileError(DomainEvent):
    """Organizing a file failed."""
    file_path: str
    message: str
    rule_name: Optional[str] = None

    def _get_event_data(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "message": self.message,
            "rule_name": self.rule_name,
        }
