"""Watch one directory and route new files to auto-organize or review.

Raw notifications arrive on the backend's thread and are handed to the event
loop. Each path has at most one pending debounce timer; a burst of events for
a path collapses into a single classification pass.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional, Set

from ..core.file_organizer import FileOrganizer
from ..core.matching_engine import MatchingEngine
from ..domain.repositories import WatchRepository
from ..events.event_bus import EventBus, WatchEvent, WatchEventType
from ..exceptions import StateError, StateErrorReason, WatcherError
from ..models.config import WatcherConfig
from ..models.records import WatchAction, WatchActivityEntry, WatchedFolderConfig
from ..models.rules import FileDescriptor, MatchSuggestion
from .filesystem import FilesystemWatcher, WatchdogFilesystemWatcher

logger = logging.getLogger(__name__)

BackendFactory = Callable[[], FilesystemWatcher]


class WatcherState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"
    RESTARTING = "restarting"


@dataclass
class SweepCounts:
    """Totals from a one-shot pass over a directory."""
    processed: int = 0
    organized: int = 0
    queued: int = 0
    skipped: int = 0
    errors: int = 0

    def add(self, action: WatchAction) -> None:
        if action is WatchAction.AUTO_ORGANIZED:
            self.organized += 1
        elif action is WatchAction.QUEUED:
            self.queued += 1
        elif action is WatchAction.SKIPPED:
            self.skipped += 1
        elif action is WatchAction.ERROR:
            self.errors += 1


def is_ignored_name(name: str) -> bool:
    """Hidden and temporary files never enter the pipeline."""
    return name.startswith('.') or name.startswith('~')


class FolderWatcher:
    """Monitors one watched folder configuration."""

    def __init__(self, config_id: int, repository: WatchRepository,
                 engine: MatchingEngine, organizer: FileOrganizer,
                 event_bus: Optional[EventBus] = None,
                 config: Optional[WatcherConfig] = None,
                 backend_factory: BackendFactory = WatchdogFilesystemWatcher):
        self.config_id = config_id
        self.repository = repository
        self.engine = engine
        self.organizer = organizer
        self.event_bus = event_bus or EventBus()
        self.config = config or WatcherConfig()
        self._backend_factory = backend_factory

        self._state = WatcherState.STOPPED
        self._backend: Optional[FilesystemWatcher] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Dict[Path, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._restart_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def is_live(self) -> bool:
        """True from start until an explicit stop, including while restarting."""
        return self._state is not WatcherState.STOPPED

    @property
    def pending_paths(self) -> Set[Path]:
        return set(self._pending)

    def _load_config(self) -> WatchedFolderConfig:
        folder = self.repository.get_watched_folder(self.config_id)
        if folder is None:
            raise WatcherError(f"Watched folder {self.config_id} does not exist")
        if not folder.path.is_dir():
            raise WatcherError(f"Watched directory does not exist: {folder.path}")
        return folder

    # Lifecycle

    async def start(self) -> None:
        """Begin watching.

        Raises:
            StateError: If this watcher is already running
            WatcherError: If the folder or its directory is missing, or the
                notification handle cannot be created
        """
        if self._state is not WatcherState.STOPPED:
            raise StateError(
                f"Watcher for folder {self.config_id} is already {self._state.value}",
                StateErrorReason.WATCHER_ALREADY_RUNNING,
            )

        self._loop = asyncio.get_running_loop()
        self._state = WatcherState.STARTING
        try:
            folder = self._load_config()
            self._open_backend(folder)
        except Exception:
            self._state = WatcherState.STOPPED
            raise

        self._state = WatcherState.RUNNING
        logger.info(f"Started watching: {folder.name} ({folder.path})")

    def _open_backend(self, folder: WatchedFolderConfig) -> None:
        backend = self._backend_factory()
        backend.start(folder.path, folder.include_subdirectories,
                      self._on_raw_change, self._on_raw_error)
        self._backend = backend

    def _close_backend(self) -> None:
        backend, self._backend = self._backend, None
        if backend is None:
            return
        try:
            backend.stop()
        except Exception as e:
            logger.warning(f"Error closing notification handle for folder {self.config_id}: {e}")

    async def stop(self) -> None:
        """Stop watching, cancel pending timers and wait for in-flight files."""
        if self._state is WatcherState.STOPPED:
            return
        self._state = WatcherState.STOPPED

        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        if self._restart_task is not None:
            self._restart_task.cancel()
            self._restart_task = None

        self.cancel_pending()
        self._close_backend()

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info(f"Stopped watcher for folder {self.config_id}")

    def cancel_pending(self) -> int:
        """Cancel every outstanding debounce timer; returns how many were pending."""
        count = len(self._pending)
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        return count

    # Raw notifications (any thread)

    def _on_raw_change(self, path: Path) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self.handle_change, path)
        except RuntimeError:
            pass  # loop shut down between the check and the call

    def _on_raw_error(self, error: Exception) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self.handle_error, error)
        except RuntimeError:
            pass

    # Event loop side

    def handle_change(self, path: Path) -> None:
        """Debounce a change notification for ``path``."""
        if self._state is not WatcherState.RUNNING:
            return
        path = Path(path)
        if is_ignored_name(path.name):
            return

        if not path.exists():
            handle = self._pending.pop(path, None)
            if handle is not None:
                handle.cancel()
                logger.debug(f"{path.name} removed before processing")
            return
        if path.is_dir():
            return

        existing = self._pending.pop(path, None)
        if existing is not None:
            existing.cancel()
        self._pending[path] = self._loop.call_later(
            self.config.debounce_seconds, self._debounce_fired, path)

    def _debounce_fired(self, path: Path) -> None:
        self._pending.pop(path, None)
        if self._state is not WatcherState.RUNNING:
            return
        task = self._loop.create_task(self.process_file(path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def handle_error(self, error: Exception) -> None:
        """Notification channel failed: drop the handle and retry after a delay."""
        if self._state in (WatcherState.STOPPED, WatcherState.ERROR):
            return
        logger.error(f"Watcher error for folder {self.config_id}: {error}")
        self._state = WatcherState.ERROR
        self._close_backend()
        self._schedule_restart()

    def _schedule_restart(self) -> None:
        self._restart_handle = self._loop.call_later(
            self.config.restart_delay_seconds, self._begin_restart)

    def _begin_restart(self) -> None:
        self._restart_handle = None
        if self._state is not WatcherState.ERROR:
            return
        self._state = WatcherState.RESTARTING
        self._restart_task = self._loop.create_task(self._restart())

    async def _restart(self) -> None:
        try:
            folder = self._load_config()
            self._open_backend(folder)
        except Exception as e:
            if self._state is not WatcherState.RESTARTING:
                return
            logger.warning(f"Restart of watcher for folder {self.config_id} failed: {e}")
            self._state = WatcherState.ERROR
            self._schedule_restart()
            return
        finally:
            self._restart_task = None

        if self._state is not WatcherState.RESTARTING:
            # Stopped while the backend was opening
            self._close_backend()
            return
        self._state = WatcherState.RUNNING
        logger.info(f"Restarted watcher for folder {self.config_id}")

    # Pipeline

    def _log(self, folder_id: int, file: FileDescriptor, action: WatchAction,
             suggestion: Optional[MatchSuggestion] = None,
             error_message: Optional[str] = None) -> None:
        self.repository.log_activity(WatchActivityEntry(
            folder_id=folder_id,
            filename=file.filename,
            path=file.path,
            action=action,
            file_extension=file.extension,
            file_type=file.file_type,
            file_size=file.size,
            matched_rule_id=suggestion.rule.id if suggestion and suggestion.rule else None,
            target_folder=suggestion.folder.folder_number if suggestion else None,
            error_message=error_message,
        ))

    def _emit(self, event_type: WatchEventType, file: FileDescriptor,
              suggestion: Optional[MatchSuggestion] = None,
              error: Optional[str] = None) -> None:
        self.event_bus.publish(WatchEvent(
            event_type=event_type,
            folder_id=self.config_id,
            filename=file.filename,
            path=file.path,
            suggestion=suggestion,
            target_folder=suggestion.folder.folder_number if suggestion else None,
            rule_name=(suggestion.rule.name if suggestion.rule else "Auto-match") if suggestion else None,
            error=error,
        ))

    def _queue(self, folder: WatchedFolderConfig, file: FileDescriptor,
               suggestion: Optional[MatchSuggestion]) -> WatchAction:
        self._log(folder.id, file, WatchAction.QUEUED, suggestion)
        self.repository.increment_counters(folder.id, organized=False)
        self._emit(WatchEventType.FILE_QUEUED, file, suggestion)
        return WatchAction.QUEUED

    async def process_file(self, path: Path) -> WatchAction:
        """Classify one file and organize it or queue it for review.

        Never raises: failures become an ``error`` activity entry and a
        ``file_error`` event.
        """
        file = FileDescriptor.from_path(path)
        try:
            folder = self.repository.get_watched_folder(self.config_id)
            if folder is None:
                logger.warning(f"Watched folder {self.config_id} vanished; ignoring {file.filename}")
                return WatchAction.SKIPPED

            logger.debug(f"Processing file: {file.filename}")

            if not folder.allows(file.file_type, file.extension):
                logger.debug(f"File type {file.file_type} not in filter, skipping")
                self._log(folder.id, file, WatchAction.SKIPPED)
                return WatchAction.SKIPPED

            self._log(folder.id, file, WatchAction.DETECTED)

            suggestions = self.engine.match_file(file).or_else_raise()
            best = suggestions[0] if suggestions else None

            if best is None:
                logger.info(f"No match for {file.filename}; queued for review")
                return self._queue(folder, file, None)

            if not best.confidence.meets(folder.confidence_threshold):
                logger.info(f"Match confidence {best.confidence.value} below threshold "
                            f"{folder.confidence_threshold.value} for {file.filename}")
                return self._queue(folder, file, best)

            if not folder.auto_organize:
                logger.info(f"Queued for review: {file.filename} "
                            f"(suggested: {best.folder.folder_number})")
                return self._queue(folder, file, best)

            rule_id = best.rule.id if best.rule else None
            moved = await self.organizer.move_file(file.path, best.folder.folder_number,
                                                   rule_id=rule_id)
            if moved.is_failure():
                message = str(moved.error())
                logger.error(f"Auto-organize failed for {file.filename}: {message}")
                self._log(folder.id, file, WatchAction.ERROR, best, message)
                self._emit(WatchEventType.FILE_ERROR, file, best, message)
                return WatchAction.ERROR

            if moved.value().skipped:
                self._log(folder.id, file, WatchAction.SKIPPED, best)
                self.repository.increment_counters(folder.id, organized=False)
                return WatchAction.SKIPPED

            self.engine.record_match(rule_id)
            self._log(folder.id, file, WatchAction.AUTO_ORGANIZED, best)
            self.repository.increment_counters(folder.id, organized=True)
            logger.info(f"Auto-organized: {file.filename} -> {best.folder.folder_number}")
            if folder.notify_on_organize:
                self._emit(WatchEventType.FILE_ORGANIZED, file, best)
            return WatchAction.AUTO_ORGANIZED

        except Exception as e:
            logger.exception(f"Error processing file {file.filename}")
            try:
                self._log(self.config_id, file, WatchAction.ERROR, error_message=str(e))
            except Exception as log_error:
                logger.error(f"Could not record error for {file.filename}: {log_error}")
            self._emit(WatchEventType.FILE_ERROR, file, error=str(e))
            return WatchAction.ERROR

    async def process_existing_files(self) -> SweepCounts:
        """Run every visible regular file currently in the directory through the pipeline.

        Raises:
            WatcherError: If the configuration or its directory no longer exists
        """
        folder = self._load_config()
        loop = asyncio.get_running_loop()
        entries = await loop.run_in_executor(None, lambda: sorted(folder.path.iterdir()))

        counts = SweepCounts()
        for entry in entries:
            if is_ignored_name(entry.name) or entry.is_dir():
                counts.skipped += 1
                continue
            action = await self.process_file(entry)
            counts.processed += 1
            counts.add(action)

        self.repository.touch_last_checked(folder.id, datetime.now())
        logger.info(f"Processed {counts.processed} existing files in {folder.path}")
        return counts
