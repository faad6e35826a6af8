"""In-memory repository implementation for testing and embedding."""

import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...domain.repositories import (
    HierarchyRepository,
    OrganizedFileRepository,
    RuleRepository,
    WatchRepository,
)
from ...models.records import (
    OrganizedFileRecord,
    RecordStatus,
    WatchActivityEntry,
    WatchedFolderConfig,
)
from ...models.rules import FolderTarget, OrganizationRule


def rule_sort_key(rule: OrganizationRule) -> tuple:
    return (-rule.priority, -rule.match_count, rule.created_at)


class InMemoryRepository(RuleRepository, HierarchyRepository,
                         OrganizedFileRepository, WatchRepository):
    """Implements every repository interface over plain dictionaries."""

    def __init__(self):
        self._lock = threading.RLock()
        self._rules: Dict[int, OrganizationRule] = {}
        self._folders: Dict[str, FolderTarget] = {}
        self._roots: Dict[Optional[str], Path] = {}
        self._selected_drive: Optional[str] = None
        self._records: Dict[int, OrganizedFileRecord] = {}
        self._watched: Dict[int, WatchedFolderConfig] = {}
        self._activity: List[WatchActivityEntry] = []
        self._ids: Dict[str, int] = {}

    def _next_id(self, table: str) -> int:
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    # Rules

    def list_active_rules(self) -> List[OrganizationRule]:
        with self._lock:
            active = [replace(r) for r in self._rules.values() if r.is_active]
        return sorted(active, key=rule_sort_key)

    def get_rule(self, rule_id: int) -> Optional[OrganizationRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            return replace(rule) if rule else None

    def create_rule(self, rule: OrganizationRule) -> OrganizationRule:
        with self._lock:
            stored = replace(rule, id=self._next_id('rules'))
            self._rules[stored.id] = stored
            return replace(stored)

    def update_rule(self, rule_id: int, **fields: Any) -> Optional[OrganizationRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return None
            updated = replace(rule, **fields)
            self._rules[rule_id] = updated
            return replace(updated)

    def increment_match_count(self, rule_id: int) -> None:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is not None:
                rule.match_count += 1

    # Hierarchy

    def add_folder_target(self, folder: FolderTarget) -> FolderTarget:
        with self._lock:
            if folder.id is None:
                folder = replace(folder, id=self._next_id('folders'))
            self._folders[folder.folder_number] = folder
            return folder

    def set_storage_root(self, path: Path, drive_id: Optional[str] = None,
                         selected: bool = False) -> None:
        """Register a drive root; ``drive_id=None`` is the default drive."""
        with self._lock:
            self._roots[drive_id] = Path(path)
            if selected:
                self._selected_drive = drive_id

    def list_folder_targets(self) -> List[FolderTarget]:
        with self._lock:
            return [self._folders[k] for k in sorted(self._folders)]

    def get_folder_target(self, folder_number: str) -> Optional[FolderTarget]:
        with self._lock:
            return self._folders.get(folder_number)

    def get_storage_root(self, drive_id: Optional[str] = None) -> Optional[Path]:
        with self._lock:
            if drive_id is not None and drive_id in self._roots:
                return self._roots[drive_id]
            if self._selected_drive in self._roots:
                return self._roots[self._selected_drive]
            return self._roots.get(None)

    # Organized files

    def create_record(self, record: OrganizedFileRecord) -> OrganizedFileRecord:
        with self._lock:
            stored = replace(record, id=self._next_id('records'))
            self._records[stored.id] = stored
            return stored

    def get_record(self, record_id: int) -> Optional[OrganizedFileRecord]:
        with self._lock:
            return self._records.get(record_id)

    def update_record_status(self, record_id: int,
                             status: RecordStatus) -> Optional[OrganizedFileRecord]:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return None
            updated = record.with_status(status)
            self._records[record_id] = updated
            return updated

    def list_records(self, status: Optional[RecordStatus] = None) -> List[OrganizedFileRecord]:
        with self._lock:
            records = [r for r in self._records.values() if status is None or r.status is status]
        return sorted(records, key=lambda r: r.id, reverse=True)

    # Watched folders

    def save_watched_folder(self, config: WatchedFolderConfig) -> WatchedFolderConfig:
        with self._lock:
            if config.id is None:
                config = replace(config, id=self._next_id('watched'))
            self._watched[config.id] = config
            return replace(config)

    def list_watched_folders(self, active_only: bool = True) -> List[WatchedFolderConfig]:
        with self._lock:
            return [replace(c) for _, c in sorted(self._watched.items())
                    if c.is_active or not active_only]

    def get_watched_folder(self, folder_id: int) -> Optional[WatchedFolderConfig]:
        with self._lock:
            config = self._watched.get(folder_id)
            return replace(config) if config else None

    def increment_counters(self, folder_id: int, organized: bool = False) -> None:
        with self._lock:
            config = self._watched.get(folder_id)
            if config is None:
                return
            config.files_processed += 1
            if organized:
                config.files_organized += 1

    def touch_last_checked(self, folder_id: int, when: Optional[datetime] = None) -> None:
        with self._lock:
            config = self._watched.get(folder_id)
            if config is not None:
                config.last_checked_at = when or datetime.now()

    def log_activity(self, entry: WatchActivityEntry) -> WatchActivityEntry:
        with self._lock:
            stored = replace(entry, id=self._next_id('activity'))
            self._activity.append(stored)
            return stored

    def list_activity(self, folder_id: Optional[int] = None,
                      limit: Optional[int] = None) -> List[WatchActivityEntry]:
        with self._lock:
            entries = [e for e in reversed(self._activity)
                       if folder_id is None or e.folder_id == folder_id]
        return entries[:limit] if limit is not None else entries
