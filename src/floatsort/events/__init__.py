"""
Event System - domain events published while organizing files.
"""

from .event_bus import DomainEvent, EventBus, EventPriority
from .domain_events import FileDetected, FileError, FileOrganized, FileSkipped

__all__ = [
    # Core event system
    "EventBus",
    "DomainEvent",
    "EventPriority",
    # Domain events
    "FileDetected",
    "FileOrganized",
    "FileSkipped",
    "FileError",
]
