"""Supervisor owning the live folder watchers."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..core.file_organizer import FileOrganizer
from ..core.matching_engine import MatchingEngine
from ..domain.repositories import WatchRepository
from ..events.event_bus import EventBus, Handler, WatchEventType
from ..exceptions import OrganizerError
from ..models.config import WatcherConfig
from ..models.records import WatchedFolderConfig
from .filesystem import WatchdogFilesystemWatcher
from .folder_watcher import BackendFactory, FolderWatcher, SweepCounts, WatcherState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatcherStatus:
    config: WatchedFolderConfig
    is_running: bool
    can_run: bool
    state: WatcherState


class WatchSupervisor:
    """Starts, stops and reports on one FolderWatcher per watched folder."""

    def __init__(self, repository: WatchRepository, engine: MatchingEngine,
                 organizer: FileOrganizer, config: Optional[WatcherConfig] = None,
                 backend_factory: BackendFactory = WatchdogFilesystemWatcher,
                 event_bus: Optional[EventBus] = None):
        self.repository = repository
        self.engine = engine
        self.organizer = organizer
        self.config = config or WatcherConfig()
        self.event_bus = event_bus or EventBus()
        self._backend_factory = backend_factory
        self._watchers: Dict[int, FolderWatcher] = {}

    def _new_watcher(self, config_id: int) -> FolderWatcher:
        return FolderWatcher(
            config_id,
            self.repository,
            self.engine,
            self.organizer,
            event_bus=self.event_bus,
            config=self.config,
            backend_factory=self._backend_factory,
        )

    def get_watcher(self, config_id: int) -> Optional[FolderWatcher]:
        return self._watchers.get(config_id)

    def is_running(self, config_id: int) -> bool:
        watcher = self._watchers.get(config_id)
        return watcher is not None and watcher.is_live

    async def start_watcher(self, config_id: int) -> FolderWatcher:
        """Start watching a folder, replacing any watcher already registered for it.

        Raises:
            WatcherError: If the folder or its directory is missing
        """
        await self.stop_watcher(config_id)

        watcher = self._new_watcher(config_id)
        await watcher.start()
        self._watchers[config_id] = watcher
        return watcher

    async def stop_watcher(self, config_id: int) -> bool:
        watcher = self._watchers.pop(config_id, None)
        if watcher is None:
            return False
        await watcher.stop()
        return True

    async def start_all(self) -> Dict[int, bool]:
        """Start a watcher for every active configuration; returns success per folder id."""
        results = {}
        for folder in self.repository.list_watched_folders(active_only=True):
            try:
                await self.start_watcher(folder.id)
                results[folder.id] = True
            except OrganizerError as e:
                logger.error(f"Failed to start watcher for {folder.name}: {e}")
                results[folder.id] = False

        started = sum(results.values())
        logger.info(f"Started {started} of {len(results)} watchers")
        return results

    async def stop_all(self) -> None:
        """Stop every live watcher; no debounce callback fires afterwards."""
        for config_id in list(self._watchers):
            await self.stop_watcher(config_id)
        logger.info("All watchers stopped")

    def get_status(self) -> List[WatcherStatus]:
        statuses = []
        for folder in self.repository.list_watched_folders(active_only=False):
            watcher = self._watchers.get(folder.id)
            try:
                can_run = folder.path.is_dir()
            except OSError:
                can_run = False
            statuses.append(WatcherStatus(
                config=folder,
                is_running=watcher is not None and watcher.is_live,
                can_run=can_run,
                state=watcher.state if watcher is not None else WatcherState.STOPPED,
            ))
        return statuses

    def on_event(self, event_type: WatchEventType, callback: Handler) -> Callable[[], None]:
        """Subscribe to watcher notifications; returns an unsubscribe callable."""
        return self.event_bus.subscribe(event_type, callback)

    async def process_existing_files(self, config_id: int) -> SweepCounts:
        """Sweep a watched folder's current contents once.

        Raises:
            WatcherError: If the configuration or its directory no longer exists
        """
        watcher = self._watchers.get(config_id) or self._new_watcher(config_id)
        return await watcher.process_existing_files()
