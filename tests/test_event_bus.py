"""Tests for the watcher notification bus."""

from pathlib import Path

from jd_organizer.events.event_bus import EventBus, WatchEvent, WatchEventType


def make_event(event_type=WatchEventType.FILE_QUEUED, **kwargs):
    return WatchEvent(event_type=event_type, folder_id=1, filename="a.pdf",
                      path=Path("/inbox/a.pdf"), **kwargs)


class TestEventBus:

    def test_publish_to_subscribers_of_type(self):
        bus = EventBus()
        queued, organized = [], []
        bus.subscribe(WatchEventType.FILE_QUEUED, queued.append)
        bus.subscribe(WatchEventType.FILE_ORGANIZED, organized.append)

        event = make_event()
        bus.publish(event)

        assert queued == [event]
        assert organized == []

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(WatchEventType.FILE_ERROR, received.append)

        unsubscribe()
        unsubscribe()
        bus.publish(make_event(WatchEventType.FILE_ERROR))

        assert received == []
        assert bus.subscriber_count(WatchEventType.FILE_ERROR) == 0

    def test_string_event_type(self):
        bus = EventBus()
        received = []
        bus.subscribe("file_organized", received.append)
        bus.publish(make_event(WatchEventType.FILE_ORGANIZED))
        assert len(received) == 1

    def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.subscribe(WatchEventType.FILE_QUEUED, broken)
        bus.subscribe(WatchEventType.FILE_QUEUED, received.append)
        bus.publish(make_event())

        assert len(received) == 1

    def test_subscriber_count_and_clear(self):
        bus = EventBus()
        bus.subscribe(WatchEventType.FILE_QUEUED, print)
        bus.subscribe(WatchEventType.FILE_ERROR, print)
        assert bus.subscriber_count() == 2

        bus.clear()
        assert bus.subscriber_count() == 0


class TestWatchEvent:

    def test_to_dict(self):
        data = make_event(target_folder="11.01", rule_name="PDFs").to_dict()
        assert data["event_type"] == "file_queued"
        assert data["path"] == "/inbox/a.pdf"
        assert data["target_folder"] == "11.01"
        assert "timestamp" in data
