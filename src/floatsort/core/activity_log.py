"""Activity log collaborator.

Every organize attempt is reported as an ``ActivityEntry``. Writing entries to
a file is left to the host application; the implementations here forward to
the ``floatsort.activity`` logger or keep entries in memory.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class OperationType(Enum):
    """Type of file operation."""
    MOVE = "move"
    COPY = "copy"
    RENAME = "rename"
    DELETE = "delete"
    TRASH = "trash"


@dataclass(frozen=True)
class ActivityEntry:
    """A single reported organize attempt."""
    operation: OperationType
    source: str
    destination: Optional[str]
    rule_name: Optional[str]
    success: bool
    error: Optional[str] = None
    detail: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def format(self) -> str:
        """Single-line rendering: ``[ts] OK move: src -> dst (rule: X)``."""
        parts = [
            f"[{self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}]",
            "OK" if self.success else "FAILED",
            f"{self.operation.value}: {self.source}",
        ]
        if self.destination:
            parts.append(f"-> {self.destination}")
        if self.rule_name:
            parts.append(f"(rule: {self.rule_name})")
        if self.detail:
            parts.append(f"[{self.detail}]")
        if self.error:
            parts.append(f"- error: {self.error}")
        return " ".join(parts)

    def to_dict(self) -> Dict:
        return {
            "operation": self.operation.value,
            "source": self.source,
            "destination": self.destination,
            "rule_name": self.rule_name,
            "success": self.success,
            "error": self.error,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }


class ActivityLog(ABC):
    """Receives one entry per organize attempt."""

    @abstractmethod
    def record(self, entry: ActivityEntry) -> None:
        pass


class LoggingActivityLog(ActivityLog):
    """Forward entries to a standard logger."""

    def __init__(self, logger_name: str = "floatsort.activity"):
        self.logger = logging.getLogger(logger_name)

    def record(self, entry: ActivityEntry) -> None:
        level = logging.INFO if entry.success else logging.ERROR
        self.logger.log(level, entry.format())


class InMemoryActivityLog(ActivityLog):
    """Keep the most recent entries in memory."""

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self.entries: List[ActivityEntry] = []

    def record(self, entry: ActivityEntry) -> None:
        self.entries.append(entry)
        if len(self.entries) > self.max_entries:
            self.entries.pop(0)

    def failures(self) -> List[ActivityEntry]:
        return [e for e in self.entries if not e.success]

    def clear(self) -> None:
        self.entries.clear()
