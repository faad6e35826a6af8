"""Destination conflict handling for file moves."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..exceptions import FileErrorKind, FileOperationError, ValidationError

DEFAULT_MAX_ATTEMPTS = 100


class ConflictStrategy(Enum):
    """What to do when the destination already holds a file."""
    RENAME = "rename"
    SKIP = "skip"
    OVERWRITE = "overwrite"


@dataclass(frozen=True)
class Resolution:
    """Outcome of conflict resolution.

    ``path`` is None when the move should be skipped.
    """
    path: Optional[Path]
    conflicted: bool = False

    @property
    def skipped(self) -> bool:
        return self.path is None


def numbered_name(path: Path, n: int) -> Path:
    """``report.pdf`` -> ``report (n).pdf``"""
    return path.with_name(f"{path.stem} ({n}){path.suffix}")


class ConflictResolver:
    """Decide the final destination for a move under a conflict strategy."""

    def __init__(self, strategy: ConflictStrategy = ConflictStrategy.RENAME,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        if isinstance(strategy, str):
            try:
                strategy = ConflictStrategy(strategy.lower())
            except ValueError:
                raise ValidationError(f"Unknown conflict strategy: {strategy}",
                                      field="conflict_strategy") from None
        self.strategy = strategy
        self.max_attempts = max_attempts

    def resolve(self, destination: Path) -> Resolution:
        """Resolve ``destination`` against what is currently on disk.

        Raises:
            FileOperationError: DESTINATION_COLLISION when no free name is
                found within ``max_attempts``
        """
        if not destination.exists():
            return Resolution(destination)

        if self.strategy is ConflictStrategy.SKIP:
            return Resolution(None, conflicted=True)

        if self.strategy is ConflictStrategy.OVERWRITE:
            return Resolution(destination, conflicted=True)

        for n in range(1, self.max_attempts + 1):
            candidate = numbered_name(destination, n)
            if not candidate.exists():
                return Resolution(candidate, conflicted=True)

        raise FileOperationError(
            f"No free name for {destination.name} after {self.max_attempts} attempts",
            kind=FileErrorKind.DESTINATION_COLLISION,
            operation="resolve_conflict",
            path=destination,
        )
