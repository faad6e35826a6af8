"""Data models for the file organizer."""

from .config import OrganizerConfig
from .records import OrganizedFileRecord, RecordStatus, WatchedFolderConfig
from .rules import Confidence, FileDescriptor, FolderTarget, OrganizationRule, RuleType, TargetType

__all__ = [
    "OrganizerConfig",
    "OrganizedFileRecord",
    "RecordStatus",
    "WatchedFolderConfig",
    "Confidence",
    "FileDescriptor",
    "FolderTarget",
    "OrganizationRule",
    "RuleType",
    "TargetType",
]
