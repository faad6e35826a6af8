"""Change-notification backends for folder watchers.

``FilesystemWatcher`` is the capability a FolderWatcher needs: start watching
a directory, report changed paths and channel errors, stop. The watchdog
backend is used in production; the in-memory backend lets tests drive events
by hand.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from watchdog.events import (
    DirDeletedEvent,
    DirMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from ..exceptions import WatcherError

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Path], None]
ErrorCallback = Callable[[Exception], None]


class FilesystemWatcher(ABC):
    """Native change notifications for one directory.

    Callbacks may be invoked from any thread.
    """

    @abstractmethod
    def start(self, path: Path, recursive: bool,
              on_change: ChangeCallback, on_error: ErrorCallback) -> None:
        """Begin watching ``path``.

        Raises:
            WatcherError: If the notification handle cannot be created
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        pass


class _ForwardingHandler(FileSystemEventHandler):
    """Translate watchdog events into changed-path callbacks."""

    def __init__(self, root: Path, on_change: ChangeCallback, on_error: ErrorCallback):
        super().__init__()
        self._root = os.path.abspath(root)
        self._on_change = on_change
        self._on_error = on_error

    def _is_root(self, path) -> bool:
        return os.path.abspath(os.fsdecode(path)) == self._root

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            if isinstance(event, (DirDeletedEvent, DirMovedEvent)) and self._is_root(event.src_path):
                self._on_error(WatcherError(f"Watched directory disappeared: {self._root}"))
            return
        if event.event_type in ('opened', 'closed', 'closed_no_write'):
            return

        try:
            self._on_change(Path(os.fsdecode(event.src_path)))
            dest = getattr(event, 'dest_path', None)
            if dest:
                self._on_change(Path(os.fsdecode(dest)))
        except Exception as e:
            logger.error(f"Failed to forward event for {event.src_path}: {e}")


class WatchdogFilesystemWatcher(FilesystemWatcher):
    """Native notifications through a watchdog observer thread."""

    def __init__(self):
        self._observer: Optional[Observer] = None
        self._lock = threading.Lock()

    def start(self, path: Path, recursive: bool,
              on_change: ChangeCallback, on_error: ErrorCallback) -> None:
        with self._lock:
            if self._observer is not None:
                raise WatcherError(f"Already watching; stop before watching {path}")
            observer = Observer()
            try:
                observer.schedule(_ForwardingHandler(path, on_change, on_error),
                                  str(path), recursive=recursive)
                observer.start()
            except OSError as e:
                raise WatcherError(f"Cannot watch {path}: {e}") from e
            self._observer = observer
        logger.debug(f"Observer started for {path} (recursive={recursive})")

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if observer.is_alive():
            observer.join(timeout=5)

    @property
    def is_running(self) -> bool:
        observer = self._observer
        return observer is not None and observer.is_alive()


class InMemoryFilesystemWatcher(FilesystemWatcher):
    """Test double: events are injected with ``emit`` and ``fail``."""

    def __init__(self, start_error: Optional[Exception] = None):
        self.start_error = start_error
        self.started: List[Tuple[Path, bool]] = []
        self.stop_count = 0
        self._on_change: Optional[ChangeCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    def start(self, path: Path, recursive: bool,
              on_change: ChangeCallback, on_error: ErrorCallback) -> None:
        if self.start_error is not None:
            raise WatcherError(str(self.start_error))
        self.started.append((Path(path), recursive))
        self._on_change = on_change
        self._on_error = on_error

    def stop(self) -> None:
        self.stop_count += 1
        self._on_change = None
        self._on_error = None

    @property
    def is_running(self) -> bool:
        return self._on_change is not None

    def emit(self, path) -> None:
        if self._on_change is not None:
            self._on_change(Path(path))

    def fail(self, error: Exception) -> None:
        if self._on_error is not None:
            self._on_error(error)
