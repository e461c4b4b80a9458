"""Write-stability detection for freshly detected files.

A path goes through::

    Detected -> Discarded                       (temp-file name)
    Detected -> initial delay -> sampling -> Stable | Timeout | Vanished

Sampling takes (size, mtime) snapshots and counts consecutive identical ones.
A file that cannot be opened exclusively is treated as locked, which resets
the counter. The round budget is ``required_checks * 2``.
"""

import asyncio
import fnmatch
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

TEMP_NAME_PATTERNS = (
    "~$*",          # Office lock files
    ".~lock.*#",    # LibreOffice lock files
    ".*",           # hidden files
    "*.tmp",
    "*.temp",
    "*.part",
    "*.partial",
    "*.crdownload",
    "*.download",
    "*~",           # editor backups
    "*.swp",
    "*.swo",
    "#*#",
)


def is_temp_file(path) -> bool:
    """True for names that belong to transient or partially written files."""
    name = Path(path).name.lower()
    if not name:
        return False
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in TEMP_NAME_PATTERNS)


class StabilityState(Enum):
    """Final state of a stability check."""
    DISCARDED = "discarded"
    STABLE = "stable"
    TIMEOUT = "timeout"
    VANISHED = "vanished"


@dataclass(frozen=True)
class StabilitySnapshot:
    size: int
    mtime_ns: int


class StabilityTracker:
    """Decide whether a file has finished being written."""

    def __init__(self,
                 initial_delay: float = 1.0,
                 required_checks: int = 3,
                 check_interval: float = 0.5,
                 lock_retry_delay: Optional[float] = None):
        if required_checks < 1:
            raise ValueError("required_checks must be at least 1")
        self.initial_delay = initial_delay
        self.required_checks = required_checks
        self.check_interval = check_interval
        self.lock_retry_delay = check_interval if lock_retry_delay is None else lock_retry_delay

    @classmethod
    def from_settings(cls, settings) -> "StabilityTracker":
        return cls(
            initial_delay=settings.stability_delay,
            required_checks=settings.stability_checks,
            check_interval=settings.stability_check_interval,
        )

    async def check(self, path: Path) -> StabilityState:
        """Run the state machine for ``path`` and return its final state."""
        path = Path(path)
        if is_temp_file(path):
            logger.debug(f"Ignoring temporary file: {path.name}")
            return StabilityState.DISCARDED

        await asyncio.sleep(self.initial_delay)

        previous: Optional[StabilitySnapshot] = None
        stable_count = 0
        for round_number in range(self.required_checks * 2):
            if not path.exists():
                logger.debug(f"File vanished during stability check: {path}")
                return StabilityState.VANISHED

            if self.is_locked(path):
                logger.debug(f"File is locked, retrying: {path.name}")
                stable_count = 0
                await asyncio.sleep(self.lock_retry_delay)
                continue

            snapshot = self.take_snapshot(path)
            if snapshot is None:
                return StabilityState.VANISHED

            if previous is not None and snapshot == previous:
                stable_count += 1
            else:
                stable_count = 0
            previous = snapshot

            if stable_count >= self.required_checks:
                logger.debug(f"File is stable after {round_number + 1} rounds: {path.name}")
                return StabilityState.STABLE

            await asyncio.sleep(self.check_interval)

        logger.info(f"File did not stabilize, giving up: {path}")
        return StabilityState.TIMEOUT

    def is_locked(self, path: Path) -> bool:
        """Try to open the file for exclusive access.

        Read-only files are probed with a read open so that they can still
        become stable.
        """
        mode = os.O_RDWR if os.access(path, os.W_OK) else os.O_RDONLY
        flags = mode | getattr(os, "O_BINARY", 0)
        try:
            fd = os.open(path, flags)
        except IsADirectoryError:
            return False
        except FileNotFoundError:
            return False
        except OSError:
            return True
        os.close(fd)
        return False

    def take_snapshot(self, path: Path) -> Optional[StabilitySnapshot]:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        return StabilitySnapshot(size=stat.st_size, mtime_ns=stat.st_mtime_ns)
