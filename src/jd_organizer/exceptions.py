"""Custom exceptions for the file organizer."""

import errno
from enum import Enum
from pathlib import Path
from typing import Optional, Union


class OrganizerError(Exception):
    """Base exception for organizer errors."""
    pass


class ValidationError(OrganizerError):
    """Raised when input is malformed (bad pattern, invalid path, missing field)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConfigurationError(OrganizerError):
    """Raised when there's an error in configuration."""
    pass


class FileErrorKind(Enum):
    """Classification of filesystem failures."""
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    CROSS_DEVICE = "cross_device"
    DESTINATION_COLLISION = "destination_collision"
    COPY_FAILED = "copy_failed"
    PATH_ESCAPE = "path_escape"
    UNKNOWN = "unknown"


class FileOperationError(OrganizerError):
    """Raised when file operations fail."""

    def __init__(self, message: str, kind: FileErrorKind = FileErrorKind.UNKNOWN,
                 operation: str = "unknown", path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.kind = kind
        self.operation = operation
        self.path = Path(path) if path is not None else None

    @classmethod
    def from_os_error(cls, error: OSError, operation: str,
                      path: Optional[Union[str, Path]] = None) -> "FileOperationError":
        """Wrap an OSError, classifying it by errno."""
        return cls(
            f"Failed to {operation}: {error.strerror or error}",
            kind=classify_os_error(error),
            operation=operation,
            path=path,
        )


class StateErrorReason(Enum):
    """Reasons an operation is rejected because of current state."""
    RECORD_NOT_FOUND = "record_not_found"
    RECORD_NOT_MOVABLE = "record_not_movable"
    FILE_MISSING_AT_DESTINATION = "file_missing_at_destination"
    ORIGINAL_LOCATION_OCCUPIED = "original_location_occupied"
    WATCHER_ALREADY_RUNNING = "watcher_already_running"
    WATCHER_NOT_RUNNING = "watcher_not_running"


class StateError(OrganizerError):
    """Raised when an operation is not allowed in the current state."""

    def __init__(self, message: str, reason: StateErrorReason):
        super().__init__(message)
        self.reason = reason


class WatcherError(OrganizerError):
    """Raised when a directory watcher cannot be started or used."""
    pass


_ERRNO_KINDS = {
    errno.ENOENT: FileErrorKind.NOT_FOUND,
    errno.EACCES: FileErrorKind.PERMISSION_DENIED,
    errno.EPERM: FileErrorKind.PERMISSION_DENIED,
    errno.EXDEV: FileErrorKind.CROSS_DEVICE,
    errno.EEXIST: FileErrorKind.DESTINATION_COLLISION,
}


def classify_os_error(error: OSError) -> FileErrorKind:
    """Map an OSError to a FileErrorKind."""
    return _ERRNO_KINDS.get(error.errno, FileErrorKind.UNKNOWN)
