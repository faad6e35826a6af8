"""Shared fixtures for organizer tests."""

import pytest

from jd_organizer.core.file_organizer import FileOrganizer
from jd_organizer.core.matching_engine import MatchingEngine
from jd_organizer.infrastructure.repositories.memory_repository import InMemoryRepository
from jd_organizer.models.config import FileOperationsConfig, MatchingConfig, WatcherConfig
from jd_organizer.models.rules import FolderTarget


FOLDERS = [
    FolderTarget("11.01", "Invoices", "Finance", "Administration", ("invoice", "billing")),
    FolderTarget("11.02", "Receipts", "Finance", "Administration", ("receipt",)),
    FolderTarget("21.01", "Photos", "Media", "Personal", ("photo", "image")),
    FolderTarget("31.01", "Scripts", "Development", "Projects", ("script", "python")),
]


@pytest.fixture
def repository():
    repo = InMemoryRepository()
    for folder in FOLDERS:
        repo.add_folder_target(folder)
    return repo


@pytest.fixture
def base_root(tmp_path):
    root = tmp_path / "jd"
    root.mkdir()
    return root


@pytest.fixture
def engine(repository):
    return MatchingEngine(repository, repository, MatchingConfig(cache_ttl_seconds=30.0))


@pytest.fixture
def organizer(repository, base_root):
    repository.set_storage_root(base_root)
    organizer = FileOrganizer(repository, repository, FileOperationsConfig(base_root=base_root))
    yield organizer
    organizer.close()


@pytest.fixture
def watcher_config():
    return WatcherConfig(debounce_seconds=0.05, restart_delay_seconds=0.05)


@pytest.fixture
def inbox(tmp_path):
    path = tmp_path / "inbox"
    path.mkdir()
    return path
