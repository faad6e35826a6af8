"""Folder watching."""

from .filesystem import FilesystemWatcher, InMemoryFilesystemWatcher, WatchdogFilesystemWatcher
from .folder_watcher import FolderWatcher, SweepCounts, WatcherState
from .supervisor import WatcherStatus, WatchSupervisor

__all__ = [
    "FilesystemWatcher",
    "InMemoryFilesystemWatcher",
    "WatchdogFilesystemWatcher",
    "FolderWatcher",
    "SweepCounts",
    "WatcherState",
    "WatcherStatus",
    "WatchSupervisor",
]
