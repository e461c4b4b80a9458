"""floatsort

Watch folders and sort new files into place using user-defined rules.
"""

__version__ = "0.1.0"

from .models.config import AppConfig, WatchFolder, load_config, save_config
from .models.rules import Rule
from .core.rule_engine import RuleEngine
from .core.file_operations import FileOperationExecutor
from .core.watch_service import WatchService

__all__ = [
    "__version__",
    "AppConfig",
    "WatchFolder",
    "load_config",
    "save_config",
    "Rule",
    "RuleEngine",
    "FileOperationExecutor",
    "WatchService",
]
