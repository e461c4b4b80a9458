"""Start and stop monitoring as one unit."""

import logging
from typing import List, Optional

from ..events import EventBus
from ..exceptions import ConfigurationError
from ..models.config import AppConfig
from .activity_log import ActivityLog
from .folder_monitor import FolderMonitor
from .processor import FileProcessor
from .scheduler import Scheduler, validate_schedule

logger = logging.getLogger(__name__)


class WatchService:
    """Wire the folder monitor and scheduler to a file processor.

    The configuration is snapshotted at ``start()``; later edits to the
    caller's ``AppConfig`` need a restart to take effect.
    """

    def __init__(self,
                 config: AppConfig,
                 event_bus: Optional[EventBus] = None,
                 activity_log: Optional[ActivityLog] = None,
                 monitor_factory=FolderMonitor,
                 scheduler_factory=Scheduler):
        self.config = config
        self.event_bus = event_bus or EventBus()
        self.activity_log = activity_log
        self._monitor_factory = monitor_factory
        self._scheduler_factory = scheduler_factory
        self.processor: Optional[FileProcessor] = None
        self.monitor: Optional[FolderMonitor] = None
        self.scheduler: Optional[Scheduler] = None

    @property
    def is_running(self) -> bool:
        return self.processor is not None and not self.processor.closed

    async def start(self) -> None:
        """Validate the configuration and start monitoring.

        Raises:
            ConfigurationError: If no folder is enabled or a schedule is
                unusable.
        """
        if self.is_running:
            return

        snapshot = self.config.snapshot()
        errors: List[str] = []
        for folder in snapshot.enabled_folders():
            errors.extend(validate_schedule(folder))
        if errors:
            raise ConfigurationError("; ".join(errors))

        processor = FileProcessor(snapshot, event_bus=self.event_bus, activity_log=self.activity_log)
        monitor = self._monitor_factory(snapshot, processor.handle_detected)
        await monitor.start()

        scheduler = self._scheduler_factory(snapshot, processor.handle_detected)
        try:
            await scheduler.start()
        except Exception:
            await monitor.stop()
            raise

        self.processor, self.monitor, self.scheduler = processor, monitor, scheduler
        logger.info(f"Watching {len(snapshot.enabled_folders())} folders with {len(snapshot.rules)} rules")

    async def stop(self) -> None:
        """Stop monitoring; signals still in flight are ignored."""
        if self.processor is None:
            return
        self.processor.close()
        if self.monitor is not None:
            await self.monitor.stop()
        if self.scheduler is not None:
            await self.scheduler.stop()
        logger.info("Watch service stopped")
