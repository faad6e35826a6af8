"""Johnny Decimal file organizer

Sorts files into a numbered area/category/folder hierarchy by rule or by
hand, with an audit trail that lets every move be rolled back, and watches
source folders to do it automatically.
"""

__version__ = "0.1.0"

from .core.file_organizer import FileOrganizer, MoveRequest
from .core.matching_engine import MatchingEngine
from .domain.result import Failure, Result, Success
from .watcher.supervisor import WatchSupervisor

__all__ = [
    "FileOrganizer",
    "MoveRequest",
    "MatchingEngine",
    "WatchSupervisor",
    "Result",
    "Success",
    "Failure",
]
