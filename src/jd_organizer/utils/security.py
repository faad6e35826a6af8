"""
Security utilities for file operations.

Provides path validation, name sanitization and containment checks so that a
destination built from folder metadata can never escape its storage root.
"""

import os
import re
from pathlib import Path
from typing import Optional, Union

from ..exceptions import FileErrorKind, FileOperationError, ValidationError

# Characters invalid in filenames on at least one supported platform
_INVALID_SEGMENT_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')
_SEPARATORS = re.compile(r'[/\\]')
_RESERVED_NAMES = {
    'CON', 'PRN', 'AUX', 'NUL',
    *(f'COM{i}' for i in range(1, 10)),
    *(f'LPT{i}' for i in range(1, 10)),
}
MAX_FILENAME_LENGTH = 255


class SecurityUtils:
    """Security utilities for file operations."""

    @staticmethod
    def validate_source_path(path: Union[str, Path, None]) -> Path:
        """
        Validate a user-supplied source path.

        Args:
            path: Path to validate

        Returns:
            The path, with surrounding whitespace removed

        Raises:
            ValidationError: If the path is empty or contains suspicious patterns
        """
        if path is None:
            raise ValidationError("Path is required", field="path")

        path_str = str(path).strip()
        if not path_str:
            raise ValidationError("Path cannot be empty", field="path")

        # Check for null bytes (potential exploit)
        if '\x00' in path_str:
            raise ValidationError("Path contains null bytes", field="path")

        # Check for path traversal attempts
        if '..' in re.split(r'[/\\]', path_str):
            raise ValidationError("Path contains parent directory references", field="path")

        return Path(path_str)

    @staticmethod
    def sanitize_segment(name: Optional[str]) -> str:
        """Make a folder name safe to use as one path segment."""
        if not name:
            return ''
        cleaned = _SEPARATORS.sub('_', name)
        cleaned = cleaned.replace('..', '_')
        cleaned = _INVALID_SEGMENT_CHARS.sub('_', cleaned)
        return cleaned.strip()

    @staticmethod
    def sanitize_filename(filename: Optional[str]) -> str:
        """Remove invalid characters from a filename, keeping its extension."""
        if not filename:
            return 'unnamed'

        sanitized = _SEPARATORS.sub('_', filename)
        sanitized = _INVALID_SEGMENT_CHARS.sub('_', sanitized)
        sanitized = sanitized.strip().strip('.')

        stem = sanitized.rsplit('.', 1)[0] if '.' in sanitized else sanitized
        if stem.upper() in _RESERVED_NAMES:
            sanitized = '_' + sanitized

        if not sanitized:
            return 'unnamed'

        if len(sanitized) > MAX_FILENAME_LENGTH:
            if '.' in sanitized:
                base, ext = sanitized.rsplit('.', 1)
                sanitized = base[:245 - len(ext)] + '.' + ext
            else:
                sanitized = sanitized[:MAX_FILENAME_LENGTH]

        return sanitized

    @staticmethod
    def is_within_base(path: Path, base_path: Path) -> bool:
        """
        Check that ``path`` stays within ``base_path`` after normalization.

        Both the literal base and its symlink-resolved form are accepted, so a
        storage root that is itself a symlink still works.
        """
        candidate = Path(os.path.abspath(path))
        bases = [Path(os.path.abspath(base_path))]
        try:
            bases.append(Path(os.path.realpath(base_path)))
        except OSError:
            pass

        for base in bases:
            if candidate == base or candidate.is_relative_to(base):
                return True
        return False

    @staticmethod
    def ensure_within_base(path: Path, base_path: Path) -> Path:
        """
        Fail closed when a destination escapes its base directory.

        Raises:
            FileOperationError: With kind PATH_ESCAPE
        """
        if not SecurityUtils.is_within_base(path, base_path):
            raise FileOperationError(
                "Destination path escapes base directory",
                kind=FileErrorKind.PATH_ESCAPE,
                operation="build_path",
                path=path,
            )
        # Symlinks inside the tree must not lead outside it either
        base = Path(os.path.abspath(base_path))
        existing = Path(os.path.abspath(path))
        while not existing.exists() and existing != base and existing != existing.parent:
            existing = existing.parent
        if (existing.exists() and existing.is_relative_to(base)
                and not SecurityUtils.is_within_base(Path(os.path.realpath(existing)), base_path)):
            raise FileOperationError(
                "Destination path escapes base directory through a symlink",
                kind=FileErrorKind.PATH_ESCAPE,
                operation="build_path",
                path=path,
            )
        return Path(os.path.abspath(path))
