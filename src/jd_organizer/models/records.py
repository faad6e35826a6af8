"""Audit records and watched-folder configuration."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .rules import Confidence


class RecordStatus(Enum):
    """Lifecycle of an organized file record."""
    MOVED = "moved"
    TRACKED = "tracked"
    UNDONE = "undone"
    DELETED = "deleted"


@dataclass(frozen=True)
class OrganizedFileRecord:
    """Durable audit entry written once per successful move."""
    filename: str
    original_path: Path
    current_path: Path
    folder_number: str
    status: RecordStatus = RecordStatus.MOVED
    rule_id: Optional[int] = None
    file_extension: str = ""
    file_type: str = "other"
    file_size: int = 0
    drive_id: Optional[str] = None
    organized_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    def with_status(self, status: RecordStatus) -> "OrganizedFileRecord":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "filename": self.filename,
            "original_path": str(self.original_path),
            "current_path": str(self.current_path),
            "folder_number": self.folder_number,
            "status": self.status.value,
            "rule_id": self.rule_id,
            "file_extension": self.file_extension,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "drive_id": self.drive_id,
            "organized_at": self.organized_at.isoformat(),
        }


@dataclass
class WatchedFolderConfig:
    """A source directory under continuous monitoring."""
    path: Path
    id: Optional[int] = None
    name: str = ""
    is_active: bool = True
    auto_organize: bool = False
    confidence_threshold: Confidence = Confidence.MEDIUM
    include_subdirectories: bool = False
    file_types: List[str] = field(default_factory=list)
    notify_on_organize: bool = True
    files_processed: int = 0
    files_organized: int = 0
    last_checked_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if isinstance(self.path, str):
            self.path = Path(self.path)
        if isinstance(self.confidence_threshold, str):
            self.confidence_threshold = Confidence(self.confidence_threshold.lower())
        if not self.name:
            self.name = self.path.name or str(self.path)

    def allows(self, file_type: str, extension: str) -> bool:
        """Check the file-type allow-list; an empty list allows everything."""
        if not self.file_types:
            return True
        allowed = {t.lower().lstrip('.') for t in self.file_types}
        return file_type.lower() in allowed or extension.lower() in allowed


class WatchAction(Enum):
    """Decision points logged by the watcher pipeline."""
    DETECTED = "detected"
    QUEUED = "queued"
    AUTO_ORGANIZED = "auto_organized"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class WatchActivityEntry:
    """Append-only log line for a watched folder."""
    folder_id: Optional[int]
    filename: str
    path: Union[str, Path]
    action: WatchAction
    file_extension: str = ""
    file_type: str = ""
    file_size: int = 0
    matched_rule_id: Optional[int] = None
    target_folder: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None
