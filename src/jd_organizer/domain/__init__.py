"""Domain layer: the Result type and repository interfaces."""

from .repositories import (
    HierarchyRepository,
    OrganizedFileRepository,
    RuleRepository,
    WatchRepository,
)
from .result import Failure, Result, Success

__all__ = [
    "HierarchyRepository",
    "OrganizedFileRepository",
    "RuleRepository",
    "WatchRepository",
    "Result",
    "Success",
    "Failure",
]
