"""File processor: the consumer of "file detected" signals.

The monitor and scheduler only say *which* file is ready. The processor
decides what happens next: files from ``manual`` folders wait in a per-folder
queue, everything else is matched against the folder's rules and organized
right away. Outcomes are published on the event bus.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from ..models.config import AppConfig, TriggerMode
from ..models.file_info import FileInfo
from ..events import EventBus, EventPriority, FileDetected, FileError, FileOrganized, FileSkipped
from .activity_log import ActivityLog
from .file_operations import FileOperationExecutor, OrganizeOutcome
from .rule_engine import RuleEngine

logger = logging.getLogger(__name__)


@dataclass
class ProcessingStats:
    """Counters for one processor session."""
    detected: int = 0
    organized: int = 0
    skipped: int = 0
    unmatched: int = 0
    errors: int = 0
    ignored: int = 0


class FileProcessor:
    """Match detected files against rules and apply their actions."""

    def __init__(self,
                 config: AppConfig,
                 event_bus: Optional[EventBus] = None,
                 activity_log: Optional[ActivityLog] = None,
                 executor: Optional[FileOperationExecutor] = None,
                 clock=None,
                 monotonic: Callable[[], float] = time.monotonic):
        self.config = config.snapshot()
        self.engine = RuleEngine(self.config.rules, clock=clock)
        self.executor = executor or FileOperationExecutor(activity_log=activity_log, engine=self.engine)
        self.event_bus = event_bus or EventBus()
        self.stats = ProcessingStats()
        self._monotonic = monotonic
        self._pending: Dict[str, List[Path]] = {}
        self._recent_outputs: Dict[Path, float] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Ignore any signal that arrives from now on."""
        self._closed = True

    async def handle_detected(self, path: Path) -> Optional[OrganizeOutcome]:
        """Entry point for the monitor and scheduler callbacks."""
        path = Path(path).absolute()
        if self._closed:
            logger.debug(f"Processor closed, ignoring {path}")
            return None
        if self._is_recent_output(path):
            logger.debug(f"Ignoring file produced by a previous action: {path}")
            self.stats.ignored += 1
            return None

        folder = self.config.folder_for_path(path)
        self.stats.detected += 1
        await self.event_bus.publish(FileDetected(
            file_path=str(path),
            folder_id=folder.id if folder else None,
        ))

        if folder is not None and folder.trigger_mode == TriggerMode.MANUAL:
            queue = self._pending.setdefault(folder.id, [])
            if path not in queue:
                queue.append(path)
                logger.info(f"Queued {path.name} for manual processing in {folder.display_name}")
            return None

        return await self.organize_path(path)

    async def organize_path(self, path: Path,
                            rule_ids: Optional[Sequence[str]] = None) -> Optional[OrganizeOutcome]:
        """Organize one file now.

        Args:
            path: File to organize.
            rule_ids: Rules to consider; defaults to the owning folder's
                rules (all rules when the folder selects none).

        Returns:
            The outcome, or None when no rule matched or the operation failed.
        """
        path = Path(path).absolute()
        loop = asyncio.get_running_loop()

        try:
            file_info = await loop.run_in_executor(None, FileInfo.from_path, path)
        except OSError as e:
            await self._fail(path, f"Cannot read file: {e}")
            return None

        folder = self.config.folder_for_path(path)
        if rule_ids is None and folder is not None:
            rule_ids = folder.rule_ids

        match = self.engine.subset(rule_ids).find_matching_rule(file_info)
        if match is None:
            logger.info(f"No rule matched {file_info.name}")
            self.stats.unmatched += 1
            await self.event_bus.publish(FileSkipped(file_path=str(path), reason="no matching rule"))
            return None

        rule = match.rule
        result = await loop.run_in_executor(None, self.executor.organize_match, file_info, match)
        if result.is_failure():
            await self._fail(path, str(result.error()), rule.name)
            return None

        outcome = result.value()
        if not outcome.changed:
            self.stats.skipped += 1
            await self.event_bus.publish(FileSkipped(
                file_path=str(path),
                reason=outcome.reason or "skipped",
                rule_name=rule.name,
            ))
            return outcome

        self.stats.organized += 1
        if outcome.destination is not None:
            self._remember_output(outcome.destination)
        await self.event_bus.publish(FileOrganized(
            original_path=str(path),
            new_path=str(outcome.destination) if outcome.destination else None,
            rule_name=rule.name,
            operation=outcome.kind.value,
        ))
        return outcome

    def pending(self, folder_id: Optional[str] = None) -> List[Path]:
        """Files waiting in manual folders, for one folder or all of them."""
        if folder_id is not None:
            return list(self._pending.get(folder_id, []))
        return [p for queue in self._pending.values() for p in queue]

    async def process_pending(self, folder_id: Optional[str] = None) -> List[OrganizeOutcome]:
        """Organize queued files; files that vanished meanwhile are dropped."""
        folder_ids = [folder_id] if folder_id is not None else list(self._pending)
        outcomes = []
        for fid in folder_ids:
            queue = self._pending.pop(fid, [])
            for path in queue:
                if not path.exists():
                    logger.debug(f"Queued file is gone: {path}")
                    continue
                outcome = await self.organize_path(path)
                if outcome is not None:
                    outcomes.append(outcome)
        return outcomes

    def statistics(self) -> Dict[str, int]:
        stats = asdict(self.stats)
        stats["pending"] = len(self.pending())
        return stats

    async def _fail(self, path: Path, message: str, rule_name: Optional[str] = None) -> None:
        logger.error(f"Failed to organize {path}: {message}")
        self.stats.errors += 1
        await self.event_bus.publish(FileError(file_path=str(path), message=message, rule_name=rule_name),
                                     priority=EventPriority.CRITICAL)

    def _remember_output(self, path: Path) -> None:
        now = self._monotonic()
        window = self.config.settings.recent_output_window
        self._recent_outputs = {p: t for p, t in self._recent_outputs.items() if now - t < window}
        self._recent_outputs[Path(path).absolute()] = now

    def _is_recent_output(self, path: Path) -> bool:
        stamp = self._recent_outputs.get(path)
        if stamp is None:
            return False
        return self._monotonic() - stamp < self.config.settings.recent_output_window
