"""Core floatsort functionality."""

from .activity_log import ActivityEntry, ActivityLog, InMemoryActivityLog, LoggingActivityLog, OperationType
from .file_operations import FileOperationExecutor, OrganizeOutcome, OutcomeKind, generate_copy_name
from .folder_monitor import FolderMonitor
from .processor import FileProcessor
from .rule_engine import RuleEngine, RuleMatch
from .scheduler import Scheduler, compute_next_run, next_run_delay, scan_folder
from .stability import StabilityState, StabilityTracker, is_temp_file
from .watch_service import WatchService

__all__ = [
    "ActivityEntry",
    "ActivityLog",
    "InMemoryActivityLog",
    "LoggingActivityLog",
    "OperationType",
    "FileOperationExecutor",
    "OrganizeOutcome",
    "OutcomeKind",
    "generate_copy_name",
    "FolderMonitor",
    "FileProcessor",
    "RuleEngine",
    "RuleMatch",
    "Scheduler",
    "compute_next_run",
    "next_run_delay",
    "scan_folder",
    "StabilityState",
    "StabilityTracker",
    "is_temp_file",
    "WatchService",
]
