"""Rule, folder and match models used by the matching engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, NamedTuple, Optional, Union

from ..core.file_types import get_file_type


class RuleType(Enum):
    """Closed set of rule kinds; each one has exactly one matcher."""
    EXTENSION = "extension"
    KEYWORD = "keyword"
    PATH = "path"
    REGEX = "regex"
    COMPOUND = "compound"
    DATE = "date"


class TargetType(Enum):
    """What a rule's target_id refers to."""
    FOLDER = "folder"
    CATEGORY = "category"
    AREA = "area"


class Confidence(Enum):
    """Ordinal strength of a match: none < low < medium < high."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANKS[self]

    def meets(self, threshold: "Confidence") -> bool:
        """True when this confidence is at least ``threshold``."""
        return self.rank >= threshold.rank


_CONFIDENCE_RANKS = {
    Confidence.NONE: 0,
    Confidence.LOW: 1,
    Confidence.MEDIUM: 2,
    Confidence.HIGH: 3,
}


@dataclass
class OrganizationRule:
    """A persisted condition -> destination mapping."""
    name: str
    rule_type: RuleType
    pattern: str
    target_type: TargetType
    target_id: str
    priority: int = 50  # Higher priority rules are evaluated first
    is_active: bool = True
    match_count: int = 0
    exclude_pattern: Optional[str] = None
    id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if isinstance(self.rule_type, str):
            self.rule_type = RuleType(self.rule_type.lower())
        if isinstance(self.target_type, str):
            self.target_type = TargetType(self.target_type.lower())


@dataclass(frozen=True)
class FolderTarget:
    """Read-only projection of a folder in the hierarchy, used for matching.

    ``folder_number`` is the unique "CC.SS" key; the owning category number
    is its "CC" part.
    """
    folder_number: str
    name: str
    category_name: str = ""
    area_name: str = ""
    keywords: tuple = ()
    storage_path: Optional[Path] = None
    id: Optional[int] = None

    @property
    def category_number(self) -> int:
        try:
            return int(self.folder_number.split('.')[0])
        except ValueError:
            return -1

    @property
    def area_range(self) -> str:
        """The area span owning this folder, e.g. "10-19"."""
        start = (self.category_number // 10) * 10
        return f"{start:02d}-{start + 9:02d}"

    @property
    def full_path(self) -> str:
        if self.area_name and self.category_name:
            return f"{self.area_name} > {self.category_name} > {self.name}"
        return self.name


@dataclass(frozen=True)
class FileDescriptor:
    """A file presented for classification."""
    filename: str
    path: Path
    extension: str = ""
    file_type: str = "other"
    size: int = 0

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "FileDescriptor":
        """Describe a file on disk; size is 0 when it cannot be stat'ed."""
        path = Path(path)
        extension = path.suffix.lower().lstrip('.')
        try:
            size = path.stat().st_size
        except OSError:
            size = 0
        return cls(
            filename=path.name,
            path=path,
            extension=extension,
            file_type=get_file_type(extension),
            size=size,
        )

    @classmethod
    def from_name(cls, filename: str, path: Union[str, Path, None] = None) -> "FileDescriptor":
        """Describe a file by name only, without touching the filesystem."""
        extension = Path(filename).suffix.lower().lstrip('.')
        return cls(
            filename=filename,
            path=Path(path) if path is not None else Path(filename),
            extension=extension,
            file_type=get_file_type(extension),
        )


class RuleMatch(NamedTuple):
    """What a pattern matcher returns on a hit."""
    confidence: Confidence
    reason: str


@dataclass(frozen=True)
class MatchSuggestion:
    """A ranked destination suggestion for one file."""
    folder: FolderTarget
    rule: Optional[OrganizationRule]
    confidence: Confidence
    reason: str

    @property
    def is_heuristic(self) -> bool:
        return self.rule is None

    @property
    def sort_key(self) -> tuple:
        priority = self.rule.priority if self.rule is not None else 0
        return (-self.confidence.rank, -priority)


@dataclass(frozen=True)
class RuleSuggestion:
    """A rule proposed from the contents of an existing folder."""
    rule_type: RuleType
    pattern: str
    confidence: Confidence
    reason: str


@dataclass(frozen=True)
class BatchMatchResult:
    file: FileDescriptor
    suggestions: List[MatchSuggestion]
