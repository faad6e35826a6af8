"""Repository interfaces for the persistence collaborator.

The organizer core reads rules and the folder hierarchy through these
interfaces and writes back match counts, audit records and watch activity.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from ..models.records import (
    OrganizedFileRecord,
    RecordStatus,
    WatchActivityEntry,
    WatchedFolderConfig,
)
from ..models.rules import FolderTarget, OrganizationRule


class RuleRepository(ABC):
    """Repository for OrganizationRule entities."""

    @abstractmethod
    def list_active_rules(self) -> List[OrganizationRule]:
        """Active rules sorted by priority desc, match_count desc, created_at asc."""
        pass

    @abstractmethod
    def get_rule(self, rule_id: int) -> Optional[OrganizationRule]:
        pass

    @abstractmethod
    def create_rule(self, rule: OrganizationRule) -> OrganizationRule:
        """Store a new rule and return it with its id assigned."""
        pass

    @abstractmethod
    def update_rule(self, rule_id: int, **fields: Any) -> Optional[OrganizationRule]:
        """Update the given fields; returns None for an unknown id."""
        pass

    @abstractmethod
    def increment_match_count(self, rule_id: int) -> None:
        pass


class HierarchyRepository(ABC):
    """Read access to the folder/category/area hierarchy."""

    @abstractmethod
    def list_folder_targets(self) -> List[FolderTarget]:
        """All folders, ordered by folder number."""
        pass

    @abstractmethod
    def get_folder_target(self, folder_number: str) -> Optional[FolderTarget]:
        pass

    @abstractmethod
    def get_storage_root(self, drive_id: Optional[str] = None) -> Optional[Path]:
        """Root of the selected drive, else the default drive, else None."""
        pass


class OrganizedFileRepository(ABC):
    """Audit trail of organized files."""

    @abstractmethod
    def create_record(self, record: OrganizedFileRecord) -> OrganizedFileRecord:
        pass

    @abstractmethod
    def get_record(self, record_id: int) -> Optional[OrganizedFileRecord]:
        pass

    @abstractmethod
    def update_record_status(self, record_id: int,
                             status: RecordStatus) -> Optional[OrganizedFileRecord]:
        pass

    @abstractmethod
    def list_records(self, status: Optional[RecordStatus] = None) -> List[OrganizedFileRecord]:
        """Records, newest first."""
        pass


class WatchRepository(ABC):
    """Watched folder configuration and activity log."""

    @abstractmethod
    def list_watched_folders(self, active_only: bool = True) -> List[WatchedFolderConfig]:
        pass

    @abstractmethod
    def get_watched_folder(self, folder_id: int) -> Optional[WatchedFolderConfig]:
        pass

    @abstractmethod
    def increment_counters(self, folder_id: int, organized: bool = False) -> None:
        """Bump files_processed, and files_organized too when ``organized``."""
        pass

    @abstractmethod
    def touch_last_checked(self, folder_id: int, when: Optional[datetime] = None) -> None:
        pass

    @abstractmethod
    def log_activity(self, entry: WatchActivityEntry) -> WatchActivityEntry:
        pass

    @abstractmethod
    def list_activity(self, folder_id: Optional[int] = None,
                      limit: Optional[int] = None) -> List[WatchActivityEntry]:
        """Activity entries, newest first."""
        pass
