"""Tests for the per-folder watcher pipeline."""

import asyncio

import pytest

from jd_organizer.core.rule_helpers import create_extension_rule
from jd_organizer.events.event_bus import EventBus, WatchEventType
from jd_organizer.exceptions import StateError, WatcherError
from jd_organizer.models.records import WatchAction, WatchedFolderConfig
from jd_organizer.models.rules import OrganizationRule
from jd_organizer.watcher.filesystem import InMemoryFilesystemWatcher
from jd_organizer.watcher.folder_watcher import FolderWatcher, WatcherState, is_ignored_name


def watch(repository, inbox, **kwargs):
    return repository.save_watched_folder(WatchedFolderConfig(path=inbox, **kwargs))


@pytest.fixture
def backend():
    return InMemoryFilesystemWatcher()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    received = []
    for event_type in WatchEventType:
        bus.subscribe(event_type, received.append)
    return received


@pytest.fixture
def make_watcher(repository, engine, organizer, bus, watcher_config, backend):
    def factory(config_id, backend_factory=None):
        return FolderWatcher(config_id, repository, engine, organizer, event_bus=bus,
                             config=watcher_config,
                             backend_factory=backend_factory or (lambda: backend))
    return factory


async def settle(seconds=0.3):
    await asyncio.sleep(seconds)


def actions(repository, folder_id):
    return [e.action for e in reversed(repository.list_activity(folder_id))]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, repository, inbox, make_watcher, backend):
        folder = watch(repository, inbox, include_subdirectories=True)
        watcher = make_watcher(folder.id)

        await watcher.start()
        assert watcher.state is WatcherState.RUNNING
        assert backend.started == [(inbox, True)]

        await watcher.stop()
        assert watcher.state is WatcherState.STOPPED
        assert backend.stop_count == 1
        assert not watcher.is_live

    @pytest.mark.asyncio
    async def test_double_start(self, repository, inbox, make_watcher):
        watcher = make_watcher(watch(repository, inbox).id)
        await watcher.start()
        try:
            with pytest.raises(StateError):
                await watcher.start()
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_missing_configuration(self, make_watcher):
        watcher = make_watcher(42)
        with pytest.raises(WatcherError):
            await watcher.start()
        assert watcher.state is WatcherState.STOPPED

    @pytest.mark.asyncio
    async def test_missing_directory(self, repository, tmp_path, make_watcher):
        folder = watch(repository, tmp_path / "nowhere")
        with pytest.raises(WatcherError):
            await make_watcher(folder.id).start()

    @pytest.mark.asyncio
    async def test_backend_failure_on_start(self, repository, inbox, make_watcher):
        failing = InMemoryFilesystemWatcher(start_error=OSError("inotify limit"))
        watcher = make_watcher(watch(repository, inbox).id, lambda: failing)
        with pytest.raises(WatcherError, match="inotify limit"):
            await watcher.start()
        assert watcher.state is WatcherState.STOPPED


class TestDebounce:

    @pytest.mark.asyncio
    async def test_burst_collapses_to_one_pass(self, repository, inbox, make_watcher, backend):
        folder = watch(repository, inbox)
        watcher = make_watcher(folder.id)
        await watcher.start()

        path = inbox / "scan.pdf"
        path.write_bytes(b"1")
        for _ in range(5):
            backend.emit(path)
            await asyncio.sleep(0)
        assert watcher.pending_paths == {path}

        await settle()
        await watcher.stop()

        assert actions(repository, folder.id).count(WatchAction.DETECTED) == 1

    @pytest.mark.asyncio
    async def test_deleted_file_cancels_timer(self, repository, inbox, make_watcher, backend):
        folder = watch(repository, inbox)
        watcher = make_watcher(folder.id)
        await watcher.start()

        path = inbox / "temp.pdf"
        path.write_bytes(b"1")
        backend.emit(path)
        await asyncio.sleep(0)
        path.unlink()
        backend.emit(path)
        await asyncio.sleep(0)

        assert watcher.pending_paths == set()
        await settle()
        await watcher.stop()
        assert repository.list_activity(folder.id) == []

    @pytest.mark.asyncio
    async def test_ignored_names(self, repository, inbox, make_watcher, backend):
        watcher = make_watcher(watch(repository, inbox).id)
        await watcher.start()

        for name in (".DS_Store", "~lock.docx"):
            (inbox / name).write_bytes(b"")
            backend.emit(inbox / name)
        await asyncio.sleep(0)

        assert watcher.pending_paths == set()
        await watcher.stop()
        assert is_ignored_name(".hidden") and not is_ignored_name("visible.txt")

    @pytest.mark.asyncio
    async def test_stop_cancels_pending(self, repository, inbox, make_watcher, backend):
        folder = watch(repository, inbox)
        watcher = make_watcher(folder.id)
        await watcher.start()

        path = inbox / "a.pdf"
        path.write_bytes(b"1")
        backend.emit(path)
        await asyncio.sleep(0)
        await watcher.stop()
        await settle()

        assert watcher.pending_paths == set()
        assert repository.list_activity(folder.id) == []


class TestPipeline:

    @pytest.mark.asyncio
    async def test_review_mode_queues(self, repository, engine, inbox, make_watcher, events):
        engine.create_rule(create_extension_rule("pdf", "11.01"))
        folder = watch(repository, inbox, auto_organize=False)
        path = inbox / "invoice.pdf"
        path.write_bytes(b"1")

        action = await make_watcher(folder.id).process_file(path)

        assert action is WatchAction.QUEUED
        assert path.exists()
        assert actions(repository, folder.id) == [WatchAction.DETECTED, WatchAction.QUEUED]
        assert [e.event_type for e in events] == [WatchEventType.FILE_QUEUED]
        assert events[0].target_folder == "11.01"
        stored = repository.get_watched_folder(folder.id)
        assert (stored.files_processed, stored.files_organized) == (1, 0)

    @pytest.mark.asyncio
    async def test_auto_organize(self, repository, engine, inbox, make_watcher, events, base_root):
        rule = engine.create_rule(create_extension_rule("pdf", "11.01")).value()
        folder = watch(repository, inbox, auto_organize=True, confidence_threshold="high")
        path = inbox / "invoice.pdf"
        path.write_bytes(b"1")

        action = await make_watcher(folder.id).process_file(path)

        assert action is WatchAction.AUTO_ORGANIZED
        assert not path.exists()
        assert list(base_root.rglob("invoice.pdf"))
        assert repository.get_rule(rule.id).match_count == 1
        assert [e.event_type for e in events] == [WatchEventType.FILE_ORGANIZED]
        assert events[0].rule_name == rule.name
        stored = repository.get_watched_folder(folder.id)
        assert (stored.files_processed, stored.files_organized) == (1, 1)
        assert repository.list_records()[0].rule_id == rule.id

    @pytest.mark.asyncio
    async def test_no_notification_when_disabled(self, repository, engine, inbox, make_watcher,
                                                 events):
        engine.create_rule(create_extension_rule("pdf", "11.01"))
        folder = watch(repository, inbox, auto_organize=True, notify_on_organize=False)
        path = inbox / "a.pdf"
        path.write_bytes(b"1")

        assert await make_watcher(folder.id).process_file(path) is WatchAction.AUTO_ORGANIZED
        assert events == []

    @pytest.mark.asyncio
    async def test_below_threshold_is_queued(self, repository, engine, inbox, make_watcher):
        engine.create_rule(OrganizationRule("loose", "regex", "inv", "folder", "11.01"))
        folder = watch(repository, inbox, auto_organize=True, confidence_threshold="medium")
        path = inbox / "invoice.xyz"
        path.write_bytes(b"1")

        assert await make_watcher(folder.id).process_file(path) is WatchAction.QUEUED
        assert path.exists()

    @pytest.mark.asyncio
    async def test_no_match_is_queued(self, repository, inbox, make_watcher, events):
        folder = watch(repository, inbox, auto_organize=True)
        path = inbox / "zz.qqq"
        path.write_bytes(b"1")

        assert await make_watcher(folder.id).process_file(path) is WatchAction.QUEUED
        assert events[0].target_folder is None

    @pytest.mark.asyncio
    async def test_allow_list_skips(self, repository, engine, inbox, make_watcher, events):
        engine.create_rule(create_extension_rule("pdf", "11.01"))
        folder = watch(repository, inbox, auto_organize=True, file_types=["image", "png"])
        path = inbox / "a.pdf"
        path.write_bytes(b"1")

        assert await make_watcher(folder.id).process_file(path) is WatchAction.SKIPPED
        assert actions(repository, folder.id) == [WatchAction.SKIPPED]
        assert events == []
        assert path.exists()

    @pytest.mark.asyncio
    async def test_move_failure(self, repository, engine, inbox, make_watcher, events):
        engine.create_rule(create_extension_rule("pdf", "11.01"))
        folder = watch(repository, inbox, auto_organize=True)

        action = await make_watcher(folder.id).process_file(inbox / "vanished.pdf")

        assert action is WatchAction.ERROR
        entry = repository.list_activity(folder.id)[0]
        assert entry.action is WatchAction.ERROR
        assert entry.error_message
        assert events[0].event_type is WatchEventType.FILE_ERROR

    @pytest.mark.asyncio
    async def test_matching_failure_becomes_error_event(self, repository, engine, inbox,
                                                        make_watcher, events):
        def broken():
            raise RuntimeError("db gone")

        repository.list_active_rules = broken
        folder = watch(repository, inbox, auto_organize=True)
        path = inbox / "a.pdf"
        path.write_bytes(b"1")

        assert await make_watcher(folder.id).process_file(path) is WatchAction.ERROR
        assert events[-1].event_type is WatchEventType.FILE_ERROR
        assert "db gone" in events[-1].error

    @pytest.mark.asyncio
    async def test_sweep_existing_files(self, repository, engine, inbox, make_watcher):
        engine.create_rule(create_extension_rule("pdf", "11.01"))
        folder = watch(repository, inbox, auto_organize=True)
        (inbox / "a.pdf").write_bytes(b"1")
        (inbox / "b.txt").write_bytes(b"1")
        (inbox / ".hidden").write_bytes(b"1")
        (inbox / "sub").mkdir()

        counts = await make_watcher(folder.id).process_existing_files()

        assert (counts.processed, counts.organized, counts.queued) == (2, 1, 1)
        assert counts.skipped == 2
        assert counts.errors == 0
        assert repository.get_watched_folder(folder.id).last_checked_at is not None


class TestRestart:

    @pytest.mark.asyncio
    async def test_restarts_after_channel_error(self, repository, inbox, make_watcher, backend):
        watcher = make_watcher(watch(repository, inbox).id)
        await watcher.start()

        backend.fail(WatcherError("queue overflow"))
        await asyncio.sleep(0)
        assert watcher.state is WatcherState.ERROR
        assert watcher.is_live

        await settle()
        assert watcher.state is WatcherState.RUNNING
        assert len(backend.started) == 2
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_keeps_retrying_until_directory_returns(self, repository, inbox, make_watcher,
                                                          backend):
        watcher = make_watcher(watch(repository, inbox).id)
        await watcher.start()

        inbox.rmdir()
        backend.fail(WatcherError("directory removed"))
        await settle()
        assert watcher.state in (WatcherState.ERROR, WatcherState.RESTARTING)

        inbox.mkdir()
        await settle()
        assert watcher.state is WatcherState.RUNNING
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_stop_during_backoff(self, repository, inbox, make_watcher, backend):
        watcher = make_watcher(watch(repository, inbox).id)
        await watcher.start()

        backend.fail(WatcherError("boom"))
        await asyncio.sleep(0)
        await watcher.stop()
        await settle()

        assert watcher.state is WatcherState.STOPPED
        assert len(backend.started) == 1
