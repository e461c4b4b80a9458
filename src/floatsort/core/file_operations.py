"""File operations: apply a matched rule's action to a file.

Conflict handling happens before any write. Copies go through a hidden
partial file that is renamed into place, so a failed copy never leaves a
truncated destination behind.
"""

import errno
import logging
import os
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, Optional, Sequence

from send2trash import send2trash

from ..domain.result import Failure, Result, Success
from ..exceptions import FileOperationError, RuleResolutionError
from ..models.file_info import FileInfo
from ..models.rules import (
    RECYCLE_SENTINEL,
    ConflictStrategy,
    CopyToAction,
    DeleteAction,
    MoveToAction,
    RenameAction,
    Rule,
    RuleAction,
)
from .activity_log import ActivityEntry, ActivityLog, LoggingActivityLog, OperationType
from .rule_engine import RuleEngine, RuleMatch

logger = logging.getLogger(__name__)

MAX_COPY_NAME_ATTEMPTS = 1000


class OutcomeKind(Enum):
    MOVED = "moved"
    COPIED = "copied"
    RENAMED = "renamed"
    DELETED = "deleted"
    TRASHED = "trashed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class OrganizeOutcome:
    """What happened to a file."""
    kind: OutcomeKind
    source: Path
    rule_name: str
    destination: Optional[Path] = None
    reason: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.kind != OutcomeKind.SKIPPED


def generate_copy_name(path: Path, max_attempts: int = MAX_COPY_NAME_ATTEMPTS) -> Path:
    """First free ``name (copy).ext`` / ``name (copy N).ext`` next to ``path``.

    Raises:
        FileOperationError: If every candidate is taken.
    """
    stem, suffix = path.stem, path.suffix
    for i in range(1, max_attempts + 1):
        label = "copy" if i == 1 else f"copy {i}"
        candidate = path.with_name(f"{stem} ({label}){suffix}")
        if not candidate.exists():
            return candidate
    raise FileOperationError(
        f"Could not find a free copy name for {path} after {max_attempts} attempts"
    )


class _DirectoryLock:
    """Lock for one destination directory; dropped once nobody holds or waits on it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


def _operation_type(action: RuleAction) -> OperationType:
    if isinstance(action, MoveToAction):
        if action.destination.strip() == RECYCLE_SENTINEL:
            return OperationType.TRASH
        return OperationType.MOVE
    if isinstance(action, CopyToAction):
        return OperationType.COPY
    if isinstance(action, RenameAction):
        return OperationType.RENAME
    if isinstance(action, DeleteAction):
        return OperationType.DELETE
    raise TypeError(f"Unsupported action: {action!r}")


class FileOperationExecutor:
    """Perform the filesystem mutation a rule asks for."""

    def __init__(self,
                 activity_log: Optional[ActivityLog] = None,
                 engine: Optional[RuleEngine] = None,
                 max_copy_attempts: int = MAX_COPY_NAME_ATTEMPTS):
        self.activity_log = activity_log or LoggingActivityLog()
        self.engine = engine or RuleEngine([])
        self.max_copy_attempts = max_copy_attempts
        self._locks: Dict[Path, _DirectoryLock] = {}
        self._locks_guard = threading.Lock()

    def organize_match(self, file_info: FileInfo, match: RuleMatch,
                       base_path: Optional[Path] = None) -> Result[OrganizeOutcome, FileOperationError]:
        return self.organize(file_info, match.rule, match.regex_captures, base_path)

    def organize(self,
                 file_info: FileInfo,
                 rule: Rule,
                 regex_captures: Sequence[str] = (),
                 base_path: Optional[Path] = None) -> Result[OrganizeOutcome, FileOperationError]:
        """Apply ``rule``'s action to ``file_info``.

        Never raises for filesystem problems; they come back as a Failure and
        are reported to the activity log like every other attempt.
        """
        operation = _operation_type(rule.action)
        base = Path(base_path) if base_path else file_info.path.parent
        destination = self.engine.get_destination_path(rule.action, file_info, base, regex_captures)

        try:
            outcome = self._execute(file_info, rule, operation, destination)
        except RuleResolutionError as e:
            error = FileOperationError(str(e))
            self._report(operation, file_info, None, rule, error=str(error))
            logger.error(str(error))
            return Failure(error)
        except FileOperationError as e:
            self._report(operation, file_info, destination, rule, error=str(e))
            logger.error(str(e))
            return Failure(e)
        except OSError as e:
            error = FileOperationError(f"{operation.value} failed for {file_info.path}: {e}")
            self._report(operation, file_info, destination, rule, error=str(error))
            logger.error(str(error))
            return Failure(error)

        reported = str(outcome.destination) if outcome.destination else None
        self._report(operation, file_info, reported, rule, detail=outcome.reason)
        return Success(outcome)

    def _execute(self, file_info: FileInfo, rule: Rule, operation: OperationType,
                 destination: Optional[str]) -> OrganizeOutcome:
        source = file_info.path
        if not source.exists() and not source.is_symlink():
            raise FileOperationError(f"Source no longer exists: {source}")

        if operation == OperationType.DELETE:
            self._remove(source)
            logger.info(f"Deleted {source}")
            return OrganizeOutcome(OutcomeKind.DELETED, source, rule.name)

        if operation == OperationType.TRASH:
            send2trash(str(source))
            logger.info(f"Moved to trash: {source}")
            return OrganizeOutcome(OutcomeKind.TRASHED, source, rule.name)

        if destination is None:
            raise RuleResolutionError(f"Rule '{rule.name}' has no destination for {source}")
        if destination == RECYCLE_SENTINEL:
            raise RuleResolutionError(f"Rule '{rule.name}' cannot {operation.value} {source} to the trash")

        if operation == OperationType.RENAME:
            target = Path(destination)
            if not target.parent.is_dir():
                raise FileOperationError(f"Rename target directory does not exist: {target.parent}")
            kind = OutcomeKind.RENAMED
        else:
            target = Path(destination) / source.name
            kind = OutcomeKind.MOVED if operation == OperationType.MOVE else OutcomeKind.COPIED

        with self._destination_lock(target.parent):
            if operation != OperationType.RENAME:
                target.parent.mkdir(parents=True, exist_ok=True)

            if target == source:
                return OrganizeOutcome(OutcomeKind.SKIPPED, source, rule.name,
                                       reason="already at destination")

            final_target = self._resolve_conflict(source, target, rule.conflict_strategy)
            if final_target is None:
                logger.info(f"Destination exists, skipping: {target}")
                return OrganizeOutcome(OutcomeKind.SKIPPED, source, rule.name,
                                       destination=target, reason="destination exists")

            if operation == OperationType.COPY:
                self._copy(source, final_target)
                logger.info(f"Copied {source} -> {final_target}")
            else:
                self._move(source, final_target)
                logger.info(f"{'Renamed' if kind == OutcomeKind.RENAMED else 'Moved'} {source} -> {final_target}")

        return OrganizeOutcome(kind, source, rule.name, destination=final_target)

    def _resolve_conflict(self, source: Path, target: Path,
                          strategy: ConflictStrategy) -> Optional[Path]:
        """Apply the conflict strategy; None means skip."""
        if not target.exists():
            return target
        try:
            if os.path.samefile(source, target):
                # case-only rename on a case-insensitive filesystem
                return target
        except OSError:
            pass

        if strategy == ConflictStrategy.SKIP:
            return None
        if strategy == ConflictStrategy.OVERWRITE:
            logger.info(f"Destination exists, overwriting: {target}")
            return target
        renamed = generate_copy_name(target, self.max_copy_attempts)
        logger.info(f"Destination exists, using {renamed.name}")
        return renamed

    def _move(self, source: Path, target: Path) -> None:
        try:
            os.replace(source, target)
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise
            logger.info(f"Cross-device move, copying {source} -> {target}")
            self._copy(source, target)
            try:
                self._remove(source)
            except OSError as remove_error:
                raise FileOperationError(
                    f"Copied {source} to {target} but could not remove the source: {remove_error}"
                ) from remove_error

    def _copy(self, source: Path, target: Path) -> None:
        partial = target.with_name(f".{target.name}.partial")
        try:
            if source.is_dir():
                shutil.copytree(source, partial)
            else:
                shutil.copy2(source, partial)
            os.replace(partial, target)
        except OSError as e:
            self._discard(partial)
            raise FileOperationError(f"Copy failed {source} -> {target}, source kept: {e}") from e

    @staticmethod
    def _remove(path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove partial copy {path}: {e}")

    @contextmanager
    def _destination_lock(self, directory: Path) -> Iterator[None]:
        key = Path(os.path.abspath(directory))
        with self._locks_guard:
            entry = self._locks.setdefault(key, _DirectoryLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def _report(self, operation: OperationType, file_info: FileInfo, destination: Optional[str],
                rule: Rule, error: Optional[str] = None, detail: Optional[str] = None) -> None:
        entry = ActivityEntry(
            operation=operation,
            source=str(file_info.path),
            destination=destination if destination != RECYCLE_SENTINEL else None,
            rule_name=rule.name,
            success=error is None,
            error=error,
            detail=detail,
        )
        try:
            self.activity_log.record(entry)
        except Exception as e:
            logger.error(f"Activity log rejected entry for {file_info.path}: {e}")
