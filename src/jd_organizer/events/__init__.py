"""Watcher notifications."""

from .event_bus import EventBus, WatchEvent, WatchEventType

__all__ = ["EventBus", "WatchEvent", "WatchEventType"]
