"""
Event Bus - notification channel for watcher outcomes.

Subscribers receive queued/organized/error notifications from the watcher
pipeline. Delivery is synchronous and a failing subscriber never breaks the
publisher.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class WatchEventType(Enum):
    """Notifications emitted by folder watchers."""
    FILE_QUEUED = "file_queued"
    FILE_ORGANIZED = "file_organized"
    FILE_ERROR = "file_error"


@dataclass
class WatchEvent:
    """A watcher outcome for one file."""
    event_type: WatchEventType
    folder_id: Optional[int]
    filename: str
    path: Path
    suggestion: Optional[Any] = None
    target_folder: Optional[str] = None
    rule_name: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "event_type": self.event_type.value,
            "folder_id": self.folder_id,
            "filename": self.filename,
            "path": str(self.path),
            "target_folder": self.target_folder,
            "rule_name": self.rule_name,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


Handler = Callable[[WatchEvent], Any]


class EventBus:
    """Publish/subscribe registry keyed by event type."""

    def __init__(self):
        self._handlers: Dict[WatchEventType, List[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: WatchEventType, handler: Handler) -> Callable[[], None]:
        """
        Subscribe to events of a specific type.

        Returns:
            A callable that removes the subscription
        """
        if isinstance(event_type, str):
            event_type = WatchEventType(event_type)

        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: WatchEvent) -> None:
        """Deliver an event to every subscriber of its type."""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler {handler!r}: {e}")

    def subscriber_count(self, event_type: Optional[WatchEventType] = None) -> int:
        with self._lock:
            if event_type is not None:
                return len(self._handlers.get(event_type, []))
            return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
