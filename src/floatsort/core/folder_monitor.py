"""Filesystem monitor for watch folders.

Each enabled folder with an event-driven trigger gets a non-recursive
watchdog watch. Raw create/modify/move events are handed from the observer
thread to the asyncio loop, where every path gets its own stability-check
task. Only paths that reach ``StabilityState.STABLE`` are signalled to the
consumer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..exceptions import ConfigurationError
from ..models.config import AppConfig, WatchFolder
from .stability import StabilityState, StabilityTracker

logger = logging.getLogger(__name__)

FileDetectedCallback = Callable[[Path], Any]


async def emit_file_detected(callback: FileDetectedCallback, path: Path) -> None:
    """Deliver a detection to the consumer, isolating its failures."""
    try:
        result = callback(path)
        if asyncio.iscoroutine(result):
            await result
    except Exception as e:
        logger.error(f"File detected handler failed for {path}: {e}", exc_info=True)


def _event_path(raw) -> Path:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return Path(raw)


class FolderEventHandler(FileSystemEventHandler):
    """Forward file events in one folder's root to the monitor."""

    def __init__(self, folder: WatchFolder, submit: Callable[[Path, WatchFolder], None]) -> None:
        super().__init__()
        self.folder = folder
        self.root = folder.path.absolute()
        self.submit = submit

    def _handle(self, raw_path) -> None:
        path = _event_path(raw_path)
        # moved events may point outside the watched root
        if path.parent != self.root:
            return
        logger.debug(f"File event in {self.folder.display_name}: {path.name}")
        self.submit(path, self.folder)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(event.dest_path)


class FolderMonitor:
    """Turn filesystem notifications into "file ready" signals."""

    def __init__(self,
                 config: AppConfig,
                 on_file_detected: FileDetectedCallback,
                 tracker: Optional[StabilityTracker] = None,
                 observer_factory: Callable[[], Any] = Observer):
        self.config = config.snapshot()
        self.settings = self.config.settings
        self.on_file_detected = on_file_detected
        self.tracker = tracker or StabilityTracker.from_settings(self.settings)
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[Path] = set()
        self._watched: List[WatchFolder] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def watched_folders(self) -> List[WatchFolder]:
        return list(self._watched)

    async def start(self) -> None:
        """Start watching.

        Raises:
            ConfigurationError: If no folder is enabled.
        """
        if self._running:
            return

        enabled = self.config.enabled_folders()
        if not enabled:
            raise ConfigurationError("No enabled watch folders")

        self._loop = asyncio.get_running_loop()
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_checks)
        observer = self._observer_factory()

        for folder in enabled:
            if not folder.trigger_mode.is_event_driven:
                continue
            if not folder.path.is_dir():
                logger.warning(f"Watch folder does not exist: {folder.display_name} ({folder.path})")
                continue
            handler = FolderEventHandler(folder, self.submit)
            observer.schedule(handler, str(folder.path.absolute()), recursive=False)
            self._watched.append(folder)
            logger.info(f"Watching {folder.display_name} ({folder.path}), root files only")

        observer.start()
        self._observer = observer
        self._running = True

        if self._watched:
            self._track(self._loop.create_task(self._scan_existing()))

    async def stop(self) -> None:
        """Stop watching and abandon in-flight stability checks."""
        if not self._running:
            return
        self._running = False

        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            await asyncio.get_running_loop().run_in_executor(None, observer.join, 5.0)

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._tasks.clear()
        self._in_flight.clear()
        self._watched = []
        logger.info("Folder monitor stopped")

    def submit(self, path: Path, folder: WatchFolder) -> None:
        """Queue a raw event; safe to call from the observer thread."""
        loop = self._loop
        if loop is None or not self._running:
            return
        try:
            loop.call_soon_threadsafe(self._spawn_check, path, folder)
        except RuntimeError:
            logger.debug(f"Event loop closed, dropping event for {path}")

    def _spawn_check(self, path: Path, folder: WatchFolder,
                     settle_delay: Optional[float] = None) -> None:
        if not self._running or self._loop is None:
            return
        if path in self._in_flight:
            logger.debug(f"Already checking {path.name}")
            return

        self._in_flight.add(path)
        if settle_delay is None:
            settle_delay = self.settings.event_settle_delay
        task = self._loop.create_task(self._check_and_emit(path, folder, settle_delay))
        self._track(task, path)

    def _track(self, task: asyncio.Task, path: Optional[Path] = None) -> None:
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if path is not None:
                self._in_flight.discard(path)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(f"Monitor task failed: {finished.exception()}")

        task.add_done_callback(_done)

    async def _check_and_emit(self, path: Path, folder: WatchFolder, settle_delay: float) -> None:
        async with self._semaphore:
            await asyncio.sleep(settle_delay)
            if not path.is_file():
                logger.debug(f"Skipping non-file entry: {path}")
                return
            state = await self.tracker.check(path)

        if state == StabilityState.STABLE:
            logger.info(f"File ready in {folder.display_name}: {path.name}")
            await emit_file_detected(self.on_file_detected, path)

    async def _scan_existing(self) -> None:
        """Feed files that existed before monitoring began through the pipeline."""
        for folder in list(self._watched):
            try:
                entries = sorted(folder.path.iterdir())
            except OSError as e:
                logger.error(f"Cannot list {folder.display_name} ({folder.path}): {e}")
                continue

            count = 0
            for entry in entries:
                if not self._running:
                    return
                if not entry.is_file():
                    continue
                count += 1
                self._spawn_check(entry.absolute(), folder, settle_delay=0.0)
                await asyncio.sleep(self.settings.scan_pacing_delay)

            logger.info(f"Initial scan of {folder.display_name} queued {count} files")
