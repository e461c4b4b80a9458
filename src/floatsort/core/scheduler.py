"""Time-based triggers for watch folders.

``on_startup`` folders are scanned once shortly after start. Every
``scheduled`` folder runs its own loop: compute the next run time, sleep
until then, scan the folder root and emit each file. Sleeps are chunked and
the wall clock is re-read on every wake, so a machine that was suspended
catches up instead of oversleeping.
"""

import asyncio
import logging
import re
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Set

from ..models.config import AppConfig, ScheduleType, TriggerMode, WatchFolder
from .folder_monitor import FileDetectedCallback, emit_file_detected
from .stability import is_temp_file

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 30
DEFAULT_TIME = "09:00"
DEFAULT_WEEKDAY = 1  # Monday

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: Optional[str]) -> Optional[time]:
    """Parse a 24-hour ``HH:MM`` string; None when malformed."""
    if not value:
        return None
    match = _HHMM.match(value.strip())
    if not match:
        return None
    return time(int(match.group(1)), int(match.group(2)))


def compute_next_run(folder: WatchFolder, now: datetime) -> Optional[datetime]:
    """Next run time for a scheduled folder.

    Args:
        folder: The watch folder; only its schedule fields are read.
        now: Current local time.

    Returns:
        The next run time, or None when the schedule type is missing or its
        time of day cannot be parsed.
    """
    schedule = folder.schedule_type

    if schedule == ScheduleType.INTERVAL:
        minutes = folder.schedule_interval_minutes
        if minutes is None:
            minutes = DEFAULT_INTERVAL_MINUTES
        if minutes <= 0:
            return None
        return now + timedelta(minutes=minutes)

    if schedule == ScheduleType.DAILY:
        at = parse_hhmm(folder.schedule_daily_time or DEFAULT_TIME)
        if at is None:
            return None
        target = datetime.combine(now.date(), at, tzinfo=now.tzinfo)
        if now.time() >= at:
            target = datetime.combine(now.date() + timedelta(days=1), at, tzinfo=now.tzinfo)
        return target

    if schedule == ScheduleType.WEEKLY:
        at = parse_hhmm(folder.schedule_weekly_time or DEFAULT_TIME)
        day = folder.schedule_weekly_day
        if day is None:
            day = DEFAULT_WEEKDAY
        if at is None or not 0 <= day <= 6:
            return None
        # configuration counts from Sunday, datetime.weekday() from Monday
        target_weekday = (day - 1) % 7
        days_ahead = (target_weekday - now.weekday()) % 7
        if days_ahead == 0 and now.time() >= at:
            days_ahead = 7
        return datetime.combine(now.date() + timedelta(days=days_ahead), at, tzinfo=now.tzinfo)

    return None


def next_run_delay(folder: WatchFolder, now: datetime) -> Optional[timedelta]:
    """Wait duration until the next run, or None if it cannot be computed."""
    target = compute_next_run(folder, now)
    if target is None:
        return None
    return target - now


def validate_schedule(folder: WatchFolder) -> List[str]:
    """Describe unusable schedule parameters of a scheduled folder.

    A missing schedule type is not reported here; the scheduler keeps
    retrying such folders.
    """
    if folder.trigger_mode != TriggerMode.SCHEDULED:
        return []

    errors = []
    name = folder.display_name
    schedule = folder.schedule_type

    if schedule == ScheduleType.INTERVAL:
        minutes = folder.schedule_interval_minutes
        if minutes is not None and (not isinstance(minutes, int) or minutes <= 0):
            errors.append(f"Folder '{name}': interval must be a positive number of minutes, got {minutes!r}")
    elif schedule == ScheduleType.DAILY:
        if folder.schedule_daily_time and parse_hhmm(folder.schedule_daily_time) is None:
            errors.append(f"Folder '{name}': daily time must be HH:MM, got {folder.schedule_daily_time!r}")
    elif schedule == ScheduleType.WEEKLY:
        if folder.schedule_weekly_time and parse_hhmm(folder.schedule_weekly_time) is None:
            errors.append(f"Folder '{name}': weekly time must be HH:MM, got {folder.schedule_weekly_time!r}")
        day = folder.schedule_weekly_day
        if day is not None and not (isinstance(day, int) and 0 <= day <= 6):
            errors.append(f"Folder '{name}': weekday must be 0 (Sunday) to 6 (Saturday), got {day!r}")
    return errors


def scan_folder(folder: WatchFolder) -> List[Path]:
    """List the files directly inside a folder root, skipping temp files."""
    root = folder.path
    if not root.exists():
        logger.warning(f"Folder does not exist: {folder.display_name} ({root})")
        return []

    try:
        entries = sorted(root.iterdir())
    except OSError as e:
        logger.error(f"Cannot read folder {folder.display_name}: {e}")
        return []

    files = [entry.absolute() for entry in entries
             if entry.is_file() and not is_temp_file(entry)]
    logger.info(f"Scanned {folder.display_name}: {len(files)} files")
    return files


class Scheduler:
    """Drive startup scans and scheduled re-scans of watch folders."""

    def __init__(self,
                 config: AppConfig,
                 on_file_detected: FileDetectedCallback,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config.snapshot()
        self.settings = self.config.settings
        self.on_file_detected = on_file_detected
        self._clock = clock
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def folders_with_trigger(self, trigger: TriggerMode) -> List[WatchFolder]:
        return [f for f in self.config.enabled_folders() if f.trigger_mode == trigger]

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        loop = asyncio.get_running_loop()

        startup = self.folders_with_trigger(TriggerMode.ON_STARTUP)
        if startup:
            logger.info(f"{len(startup)} folders will be scanned at startup")
            self._track(loop.create_task(self._run_startup(startup)))
        else:
            logger.info("No folders to scan at startup")

        scheduled = self.folders_with_trigger(TriggerMode.SCHEDULED)
        if not scheduled:
            logger.info("No scheduled folders")
        for folder in scheduled:
            logger.info(f"Starting schedule for {folder.display_name}")
            self._track(loop.create_task(self._run_folder(folder)))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_startup(self, folders: List[WatchFolder]) -> None:
        await asyncio.sleep(self.settings.startup_scan_delay)
        for folder in folders:
            if not self._running:
                return
            logger.info(f"Startup scan: {folder.display_name} ({folder.path})")
            await self.scan_and_emit(folder)

    async def _run_folder(self, folder: WatchFolder) -> None:
        name = folder.display_name
        while self._running:
            target = compute_next_run(folder, self._clock())
            if target is None:
                logger.warning(
                    f"Cannot compute next run for {name}, retrying in "
                    f"{self.settings.schedule_retry_backoff:.0f}s"
                )
                await asyncio.sleep(self.settings.schedule_retry_backoff)
                continue

            wait = (target - self._clock()).total_seconds()
            logger.info(f"{name} runs in {wait / 60:.1f} minutes")
            await self._sleep_until(target)

            logger.info(f"Running scheduled scan: {name}")
            try:
                await self.scan_and_emit(folder)
            except Exception as e:
                logger.error(f"Scheduled scan of {name} failed: {e}", exc_info=True)

    async def _sleep_until(self, target: datetime) -> None:
        while True:
            remaining = (target - self._clock()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, self.settings.schedule_max_sleep))

    async def scan_and_emit(self, folder: WatchFolder) -> int:
        """Scan one folder and emit every file found; returns the count."""
        loop = asyncio.get_running_loop()
        files = await loop.run_in_executor(None, scan_folder, folder)
        for path in files:
            await emit_file_detected(self.on_file_detected, path)
        return len(files)
