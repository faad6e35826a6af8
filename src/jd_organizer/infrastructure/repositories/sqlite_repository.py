"""SQLite-backed repository for rules, hierarchy, audit records and watch activity."""

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, List, Optional

from ...domain.repositories import (
    HierarchyRepository,
    OrganizedFileRepository,
    RuleRepository,
    WatchRepository,
)
from ...models.records import (
    OrganizedFileRecord,
    RecordStatus,
    WatchAction,
    WatchActivityEntry,
    WatchedFolderConfig,
)
from ...models.rules import Confidence, FolderTarget, OrganizationRule

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS organization_rules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        rule_type TEXT NOT NULL,
        pattern TEXT NOT NULL,
        target_type TEXT NOT NULL,
        target_id TEXT NOT NULL,
        priority INTEGER DEFAULT 50,
        is_active INTEGER DEFAULT 1,
        match_count INTEGER DEFAULT 0,
        exclude_pattern TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS folders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        folder_number TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        category_name TEXT DEFAULT '',
        area_name TEXT DEFAULT '',
        keywords TEXT,
        storage_path TEXT
    );

    CREATE TABLE IF NOT EXISTS storage_roots (
        drive_id TEXT PRIMARY KEY,
        root_path TEXT NOT NULL,
        is_selected INTEGER DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS organized_files (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        filename TEXT NOT NULL,
        original_path TEXT NOT NULL,
        current_path TEXT NOT NULL,
        folder_number TEXT NOT NULL,
        status TEXT NOT NULL,
        rule_id INTEGER,
        file_extension TEXT,
        file_type TEXT,
        file_size INTEGER,
        drive_id TEXT,
        organized_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS watched_folders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL UNIQUE,
        name TEXT,
        is_active INTEGER DEFAULT 1,
        auto_organize INTEGER DEFAULT 0,
        confidence_threshold TEXT DEFAULT 'medium',
        include_subdirectories INTEGER DEFAULT 0,
        file_types TEXT,
        notify_on_organize INTEGER DEFAULT 1,
        files_processed INTEGER DEFAULT 0,
        files_organized INTEGER DEFAULT 0,
        last_checked_at TEXT
    );

    CREATE TABLE IF NOT EXISTS watch_activity (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        folder_id INTEGER,
        filename TEXT NOT NULL,
        path TEXT NOT NULL,
        action TEXT NOT NULL,
        file_extension TEXT,
        file_type TEXT,
        file_size INTEGER,
        matched_rule_id INTEGER,
        target_folder TEXT,
        error_message TEXT,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_rules_active ON organization_rules(is_active, priority);
    CREATE INDEX IF NOT EXISTS idx_records_status ON organized_files(status);
    CREATE INDEX IF NOT EXISTS idx_activity_folder ON watch_activity(folder_id);
"""

# Stored in place of NULL so the default drive can be a primary key
_DEFAULT_DRIVE = ''

_RULE_COLUMNS = {
    'name', 'rule_type', 'pattern', 'target_type', 'target_id',
    'priority', 'is_active', 'match_count', 'exclude_pattern',
}


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _column_value(value: Any) -> Any:
    if hasattr(value, 'value'):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class SQLiteRepository(RuleRepository, HierarchyRepository,
                       OrganizedFileRepository, WatchRepository):
    """Implements every repository interface on one SQLite database."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the repository with optional custom database path."""
        if db_path is None:
            data_dir = Path.home() / ".local" / "share" / "jd-organizer"
            data_dir.mkdir(parents=True, exist_ok=True)
            db_path = data_dir / "organizer.db"

        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()
        self._init_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize the SQLite database with required tables."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    # Rules

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> OrganizationRule:
        return OrganizationRule(
            id=row['id'],
            name=row['name'],
            rule_type=row['rule_type'],
            pattern=row['pattern'],
            target_type=row['target_type'],
            target_id=row['target_id'],
            priority=row['priority'],
            is_active=bool(row['is_active']),
            match_count=row['match_count'],
            exclude_pattern=row['exclude_pattern'],
            created_at=datetime.fromisoformat(row['created_at']),
        )

    def list_active_rules(self) -> List[OrganizationRule]:
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM organization_rules WHERE is_active = 1
                   ORDER BY priority DESC, match_count DESC, created_at ASC, id ASC"""
            ).fetchall()
        return [self._row_to_rule(row) for row in rows]

    def get_rule(self, rule_id: int) -> Optional[OrganizationRule]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM organization_rules WHERE id = ?", (rule_id,)
            ).fetchone()
        return self._row_to_rule(row) if row else None

    def create_rule(self, rule: OrganizationRule) -> OrganizationRule:
        with self._write_lock, self._connect() as conn:
            cursor = conn.execute(
                """INSERT INTO organization_rules
                   (name, rule_type, pattern, target_type, target_id, priority,
                    is_active, match_count, exclude_pattern, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    rule.name,
                    rule.rule_type.value,
                    rule.pattern,
                    rule.target_type.value,
                    rule.target_id,
                    rule.priority,
                    int(rule.is_active),
                    rule.match_count,
                    rule.exclude_pattern,
                    rule.created_at.isoformat(),
                )
            )
            rule_id = cursor.lastrowid
        return self.get_rule(rule_id)

    def update_rule(self, rule_id: int, **fields: Any) -> Optional[OrganizationRule]:
        unknown = set(fields) - _RULE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown rule fields: {', '.join(sorted(unknown))}")
        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            values = [_column_value(v) for v in fields.values()]
            with self._write_lock, self._connect() as conn:
                conn.execute(
                    f"UPDATE organization_rules SET {assignments} WHERE id = ?",
                    (*values, rule_id)
                )
        return self.get_rule(rule_id)

    def increment_match_count(self, rule_id: int) -> None:
        with self._write_lock, self._connect() as conn:
            conn.execute(
                "UPDATE organization_rules SET match_count = match_count + 1 WHERE id = ?",
                (rule_id,)
            )

    # Hierarchy

    @staticmethod
    def _row_to_folder(row: sqlite3.Row) -> FolderTarget:
        return FolderTarget(
            id=row['id'],
            folder_number=row['folder_number'],
            name=row['name'],
            category_name=row['category_name'] or '',
            area_name=row['area_name'] or '',
            keywords=tuple(json.loads(row['keywords'])) if row['keywords'] else (),
            storage_path=Path(row['storage_path']) if row['storage_path'] else None,
        )

    def add_folder_target(self, folder: FolderTarget) -> FolderTarget:
        with self._write_lock, self._connect() as conn:
            conn.execute(
                """INSERT INTO folders
                   (folder_number, name, category_name, area_name, keywords, storage_path)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(folder_number) DO UPDATE SET
                     name = excluded.name,
                     category_name = excluded.category_name,
                     area_name = excluded.area_name,
                     keywords = excluded.keywords,
                     storage_path = excluded.storage_path""",
                (
                    folder.folder_number,
                    folder.name,
                    folder.category_name,
                    folder.area_name,
                    json.dumps(list(folder.keywords)),
                    str(folder.storage_path) if folder.storage_path else None,
                )
            )
        return self.get_folder_target(folder.folder_number)

    def set_storage_root(self, path: Path, drive_id: Optional[str] = None,
                         selected: bool = False) -> None:
        """Register a drive root; ``drive_id=None`` is the default drive."""
        key = drive_id if drive_id is not None else _DEFAULT_DRIVE
        with self._write_lock, self._connect() as conn:
            if selected:
                conn.execute("UPDATE storage_roots SET is_selected = 0")
            conn.execute(
                """INSERT INTO storage_roots (drive_id, root_path, is_selected)
                   VALUES (?, ?, ?)
                   ON CONFLICT(drive_id) DO UPDATE SET
                     root_path = excluded.root_path,
                     is_selected = excluded.is_selected""",
                (key, str(path), int(selected))
            )

    def list_folder_targets(self) -> List[FolderTarget]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM folders ORDER BY folder_number").fetchall()
        return [self._row_to_folder(row) for row in rows]

    def get_folder_target(self, folder_number: str) -> Optional[FolderTarget]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM folders WHERE folder_number = ?", (folder_number,)
            ).fetchone()
        return self._row_to_folder(row) if row else None

    def get_storage_root(self, drive_id: Optional[str] = None) -> Optional[Path]:
        with self._connect() as conn:
            row = None
            if drive_id is not None:
                row = conn.execute(
                    "SELECT root_path FROM storage_roots WHERE drive_id = ?", (drive_id,)
                ).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT root_path FROM storage_roots WHERE is_selected = 1"
                ).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT root_path FROM storage_roots WHERE drive_id = ?", (_DEFAULT_DRIVE,)
                ).fetchone()
        return Path(row['root_path']) if row else None

    # Organized files

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> OrganizedFileRecord:
        return OrganizedFileRecord(
            id=row['id'],
            filename=row['filename'],
            original_path=Path(row['original_path']),
            current_path=Path(row['current_path']),
            folder_number=row['folder_number'],
            status=RecordStatus(row['status']),
            rule_id=row['rule_id'],
            file_extension=row['file_extension'] or '',
            file_type=row['file_type'] or 'other',
            file_size=row['file_size'] or 0,
            drive_id=row['drive_id'],
            organized_at=datetime.fromisoformat(row['organized_at']),
        )

    def create_record(self, record: OrganizedFileRecord) -> OrganizedFileRecord:
        with self._write_lock, self._connect() as conn:
            cursor = conn.execute(
                """INSERT INTO organized_files
                   (filename, original_path, current_path, folder_number, status, rule_id,
                    file_extension, file_type, file_size, drive_id, organized_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.filename,
                    str(record.original_path),
                    str(record.current_path),
                    record.folder_number,
                    record.status.value,
                    record.rule_id,
                    record.file_extension,
                    record.file_type,
                    record.file_size,
                    record.drive_id,
                    record.organized_at.isoformat(),
                )
            )
            record_id = cursor.lastrowid
        return self.get_record(record_id)

    def get_record(self, record_id: int) -> Optional[OrganizedFileRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM organized_files WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def update_record_status(self, record_id: int,
                             status: RecordStatus) -> Optional[OrganizedFileRecord]:
        with self._write_lock, self._connect() as conn:
            conn.execute(
                "UPDATE organized_files SET status = ? WHERE id = ?",
                (status.value, record_id)
            )
        return self.get_record(record_id)

    def list_records(self, status: Optional[RecordStatus] = None) -> List[OrganizedFileRecord]:
        with self._connect() as conn:
            if status is None:
                rows = conn.execute("SELECT * FROM organized_files ORDER BY id DESC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM organized_files WHERE status = ? ORDER BY id DESC",
                    (status.value,)
                ).fetchall()
        return [self._row_to_record(row) for row in rows]

    # Watched folders

    @staticmethod
    def _row_to_config(row: sqlite3.Row) -> WatchedFolderConfig:
        return WatchedFolderConfig(
            id=row['id'],
            path=Path(row['path']),
            name=row['name'] or '',
            is_active=bool(row['is_active']),
            auto_organize=bool(row['auto_organize']),
            confidence_threshold=Confidence(row['confidence_threshold']),
            include_subdirectories=bool(row['include_subdirectories']),
            file_types=json.loads(row['file_types']) if row['file_types'] else [],
            notify_on_organize=bool(row['notify_on_organize']),
            files_processed=row['files_processed'],
            files_organized=row['files_organized'],
            last_checked_at=_dt(row['last_checked_at']),
        )

    def save_watched_folder(self, config: WatchedFolderConfig) -> WatchedFolderConfig:
        values = (
            str(config.path),
            config.name,
            int(config.is_active),
            int(config.auto_organize),
            config.confidence_threshold.value,
            int(config.include_subdirectories),
            json.dumps(config.file_types),
            int(config.notify_on_organize),
        )
        with self._write_lock, self._connect() as conn:
            if config.id is None:
                cursor = conn.execute(
                    """INSERT INTO watched_folders
                       (path, name, is_active, auto_organize, confidence_threshold,
                        include_subdirectories, file_types, notify_on_organize)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    values
                )
                folder_id = cursor.lastrowid
            else:
                conn.execute(
                    """UPDATE watched_folders SET
                         path = ?, name = ?, is_active = ?, auto_organize = ?,
                         confidence_threshold = ?, include_subdirectories = ?,
                         file_types = ?, notify_on_organize = ?
                       WHERE id = ?""",
                    (*values, config.id)
                )
                folder_id = config.id
        return self.get_watched_folder(folder_id)

    def list_watched_folders(self, active_only: bool = True) -> List[WatchedFolderConfig]:
        query = "SELECT * FROM watched_folders"
        if active_only:
            query += " WHERE is_active = 1"
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id").fetchall()
        return [self._row_to_config(row) for row in rows]

    def get_watched_folder(self, folder_id: int) -> Optional[WatchedFolderConfig]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM watched_folders WHERE id = ?", (folder_id,)
            ).fetchone()
        return self._row_to_config(row) if row else None

    def increment_counters(self, folder_id: int, organized: bool = False) -> None:
        with self._write_lock, self._connect() as conn:
            conn.execute(
                """UPDATE watched_folders
                   SET files_processed = files_processed + 1,
                       files_organized = files_organized + ?
                   WHERE id = ?""",
                (1 if organized else 0, folder_id)
            )

    def touch_last_checked(self, folder_id: int, when: Optional[datetime] = None) -> None:
        when = when or datetime.now()
        with self._write_lock, self._connect() as conn:
            conn.execute(
                "UPDATE watched_folders SET last_checked_at = ? WHERE id = ?",
                (when.isoformat(), folder_id)
            )

    def log_activity(self, entry: WatchActivityEntry) -> WatchActivityEntry:
        with self._write_lock, self._connect() as conn:
            cursor = conn.execute(
                """INSERT INTO watch_activity
                   (folder_id, filename, path, action, file_extension, file_type,
                    file_size, matched_rule_id, target_folder, error_message, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.folder_id,
                    entry.filename,
                    str(entry.path),
                    entry.action.value,
                    entry.file_extension,
                    entry.file_type,
                    entry.file_size,
                    entry.matched_rule_id,
                    entry.target_folder,
                    entry.error_message,
                    entry.created_at.isoformat(),
                )
            )
            entry_id = cursor.lastrowid
        return replace(entry, id=entry_id)

    def list_activity(self, folder_id: Optional[int] = None,
                      limit: Optional[int] = None) -> List[WatchActivityEntry]:
        query = "SELECT * FROM watch_activity"
        params: list = []
        if folder_id is not None:
            query += " WHERE folder_id = ?"
            params.append(folder_id)
        query += " ORDER BY id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            WatchActivityEntry(
                id=row['id'],
                folder_id=row['folder_id'],
                filename=row['filename'],
                path=row['path'],
                action=WatchAction(row['action']),
                file_extension=row['file_extension'] or '',
                file_type=row['file_type'] or '',
                file_size=row['file_size'] or 0,
                matched_rule_id=row['matched_rule_id'],
                target_folder=row['target_folder'],
                error_message=row['error_message'],
                created_at=datetime.fromisoformat(row['created_at']),
            )
            for row in rows
        ]
