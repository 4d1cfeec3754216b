"""Tests for the storage adapter: lifecycle, upgrade and delegation."""
import pytest

from notepocket.config import WritePolicy
from notepocket.exceptions import (
    DeserializationFailedError,
    ErrorCode,
    FileSelectionCancelledError,
    InitializationUnsupportedError,
    NoteValidationError,
    StorageError,
)
from notepocket.models.schema import (
    AdapterState,
    BackendKind,
    FolderCreate,
    NoteCreate,
)
from notepocket.storage.adapter import StorageAdapter
from notepocket.storage.durable_store import DurableStore
from tests.fakes import (
    CancellingFileSelector,
    ExplodingFileSelector,
    FakeFileSelector,
    always_available,
)


def _snapshot(adapter):
    return adapter.get_all_folders(), adapter.get_all_notes()


def _populate(adapter):
    work = adapter.create_folder({"name": "Work", "color": "#1976d2"})
    adapter.create_note({"title": "Plan", "content": "Q3", "tags": ["project"], "folderId": work.id})
    adapter.create_note({"title": "Loose", "isFavorite": True})
    return work


class TestLifecycle:
    def test_calls_before_initialize_fail(self, test_config):
        adapter = StorageAdapter(config=test_config)
        with pytest.raises(StorageError) as exc_info:
            adapter.get_all_notes()
        assert exc_info.value.code == ErrorCode.STORAGE_NOT_INITIALIZED
        assert adapter.status().initialized is False
        assert adapter.status().backend is None

    def test_initialize_activates_volatile_store(self, test_config):
        adapter = StorageAdapter(config=test_config)
        status = adapter.initialize()
        assert status.state == AdapterState.VOLATILE_ACTIVE
        assert status.backend == BackendKind.VOLATILE
        assert status.initialized is True
        assert status.durable_path is None
        adapter.close()

    def test_initialize_is_idempotent(self, adapter):
        note = adapter.create_note({"title": "Keep"})
        adapter.initialize()
        assert adapter.get_note(note.id) == note

    def test_demo_data_seeded_when_enabled(self, test_config, monkeypatch):
        monkeypatch.setattr(test_config, "seed_demo_data", True)
        adapter = StorageAdapter(config=test_config)
        adapter.initialize()
        try:
            assert [f.name for f in adapter.get_all_folders()] == ["Ideas", "Personal", "Work"]
            assert len(adapter.get_all_notes()) == 6
            assert len(adapter.favorite_notes()) == 2
        finally:
            adapter.close()

    def test_close_returns_to_uninitialized(self, adapter):
        adapter.close()
        assert adapter.state == AdapterState.UNINITIALIZED
        with pytest.raises(StorageError):
            adapter.get_all_notes()


class TestDelegation:
    def test_accepts_dicts_and_models(self, adapter):
        a = adapter.create_note({"title": "From dict", "type": "text"})
        b = adapter.create_note(NoteCreate(title="From model"))
        assert {n.id for n in adapter.get_all_notes()} == {a.id, b.id}

    def test_invalid_input_raises_validation_error(self, adapter):
        with pytest.raises(NoteValidationError) as exc_info:
            adapter.create_note({"title": ""})
        assert exc_info.value.code == ErrorCode.NOTE_TITLE_REQUIRED

        with pytest.raises(NoteValidationError) as exc_info:
            adapter.create_note({"title": "x", "type": "video"})
        assert exc_info.value.code == ErrorCode.INVALID_NOTE_TYPE

        with pytest.raises(NoteValidationError) as exc_info:
            adapter.create_folder({"name": ""})
        assert exc_info.value.code == ErrorCode.FOLDER_VALIDATION_FAILED

    def test_update_with_dict(self, adapter):
        note = adapter.create_note({"title": "Old"})
        updated = adapter.update_note(note.id, {"title": "New", "isFavorite": True})
        assert updated.title == "New"
        assert updated.is_favorite is True

    def test_queries(self, adapter):
        work = _populate(adapter)
        assert [n.title for n in adapter.search("q3")] == ["Plan"]
        assert [n.title for n in adapter.notes_by_folder(work.id)] == ["Plan"]
        assert [n.title for n in adapter.favorite_notes()] == ["Loose"]
        assert adapter.get_folder(work.id).name == "Work"

    def test_folder_update_and_delete(self, adapter):
        work = _populate(adapter)
        adapter.update_folder(work.id, {"color": "#000000"})
        assert adapter.get_folder(work.id).color == "#000000"
        adapter.delete_folder(work.id)
        assert adapter.notes_by_folder(None)[0].folder_id is None
        assert len(adapter.notes_by_folder(None)) == 2


class TestUpgrade:
    def test_upgrade_preserves_data(self, adapter, db_path):
        """Test that upgrading moves every record with ids and timestamps intact."""
        _populate(adapter)
        before = _snapshot(adapter)

        result = adapter.upgrade(FakeFileSelector(new=db_path))

        assert result.status == "upgraded"
        assert result.success
        assert result.migrated_notes == 2
        assert result.migrated_folders == 1
        assert _snapshot(adapter) == before

        status = adapter.status()
        assert status.state == AdapterState.DURABLE_ACTIVE
        assert status.backend == BackendKind.DURABLE
        assert status.durable_path == str(db_path)

    def test_upgraded_data_is_on_disk(self, adapter, db_path):
        _populate(adapter)
        adapter.upgrade(FakeFileSelector(new=db_path))
        adapter.create_note({"title": "After upgrade"})

        on_disk = DurableStore.open(db_path)
        try:
            assert len(on_disk.get_all_notes()) == 3
            assert len(on_disk.get_all_folders()) == 1
        finally:
            on_disk.discard()

    def test_upgrade_opens_existing_file(self, adapter, db_path):
        existing = DurableStore.create(db_path)
        saved = existing.create_note(NoteCreate(title="Already saved"))
        existing.close()

        adapter.create_note({"title": "In memory"})
        selector = FakeFileSelector(existing=db_path)
        result = adapter.upgrade(selector)

        assert result.status == "upgraded"
        assert selector.new_calls == 0
        titles = {n.title for n in adapter.get_all_notes()}
        assert titles == {"Already saved", "In memory"}
        assert adapter.get_note(saved.id) == saved

    def test_declined_upgrade_is_a_no_op(self, adapter):
        _populate(adapter)
        before = _snapshot(adapter)
        selector = CancellingFileSelector()

        result = adapter.upgrade(selector)

        assert result.status == "declined"
        assert isinstance(result.error, FileSelectionCancelledError)
        assert selector.existing_calls == 1
        assert selector.new_calls == 1
        assert adapter.state == AdapterState.VOLATILE_ACTIVE
        assert _snapshot(adapter) == before

    def test_unsupported_upgrade_is_a_no_op(self, unsupported_adapter, db_path):
        _populate(unsupported_adapter)
        before = _snapshot(unsupported_adapter)
        selector = FakeFileSelector(new=db_path)

        result = unsupported_adapter.upgrade(selector)

        assert result.status == "failed"
        assert isinstance(result.error, InitializationUnsupportedError)
        assert result.error.code == ErrorCode.STORAGE_UNSUPPORTED
        assert selector.existing_calls == 0
        assert not db_path.exists()
        assert unsupported_adapter.state == AdapterState.VOLATILE_ACTIVE
        assert _snapshot(unsupported_adapter) == before

    def test_corrupt_file_upgrade_is_a_no_op(self, adapter, db_path):
        db_path.write_bytes(b"not a database at all")
        _populate(adapter)
        before = _snapshot(adapter)

        result = adapter.upgrade(FakeFileSelector(existing=db_path))

        assert result.status == "failed"
        assert isinstance(result.error, DeserializationFailedError)
        assert adapter.status().backend == BackendKind.VOLATILE
        assert _snapshot(adapter) == before
        assert db_path.read_bytes() == b"not a database at all"

    def test_unexpected_error_restores_volatile_state(self, adapter):
        _populate(adapter)
        before = _snapshot(adapter)
        with pytest.raises(RuntimeError):
            adapter.upgrade(ExplodingFileSelector())
        assert adapter.state == AdapterState.VOLATILE_ACTIVE
        assert _snapshot(adapter) == before

    def test_failure_during_copy_is_a_no_op(self, adapter, db_path, monkeypatch):
        _populate(adapter)
        before = _snapshot(adapter)

        def broken_bulk_load(self, folders, notes):
            raise StorageError("copy failed", operation="bulk_load")
        monkeypatch.setattr(DurableStore, "bulk_load", broken_bulk_load)

        result = adapter.upgrade(FakeFileSelector(new=db_path))

        assert result.status == "failed"
        assert adapter.status().backend == BackendKind.VOLATILE
        assert _snapshot(adapter) == before

    def test_upgrade_after_failure_succeeds(self, adapter, db_path):
        _populate(adapter)
        assert adapter.upgrade(CancellingFileSelector()).status == "declined"
        assert adapter.upgrade(FakeFileSelector(new=db_path)).status == "upgraded"
        assert len(adapter.get_all_notes()) == 2

    def test_second_upgrade_reports_already_durable(self, durable_adapter):
        assert durable_adapter.upgrade().status == "already_durable"

    def test_default_selector_uses_configured_path(self, adapter, test_config):
        result = adapter.upgrade()
        assert result.status == "upgraded"
        assert adapter.status().durable_path == str(test_config.get_database_path())

    def test_periodic_policy_after_upgrade(self, adapter, test_config, db_path, monkeypatch):
        monkeypatch.setattr(test_config, "write_policy", WritePolicy.PERIODIC)
        monkeypatch.setattr(test_config, "autosave_interval", 3600.0)
        adapter.upgrade(FakeFileSelector(new=db_path))
        adapter.create_note({"title": "Buffered"})

        adapter.force_save()
        on_disk = DurableStore.open(db_path)
        try:
            assert [n.title for n in on_disk.get_all_notes()] == ["Buffered"]
        finally:
            on_disk.discard()


class TestWorkFolderScenario:
    """Create a folder and notes, upgrade, delete the folder, restart."""

    def test_notes_survive_folder_delete_across_restart(self, test_config, db_path):
        adapter = StorageAdapter(config=test_config, capability_probe=always_available)
        adapter.initialize()
        work = adapter.create_folder(FolderCreate(name="Work"))
        note_ids = [
            adapter.create_note({"title": f"Task {i}", "folderId": work.id}).id for i in range(3)
        ]
        assert adapter.upgrade(FakeFileSelector(new=db_path)).status == "upgraded"

        adapter.delete_folder(work.id)
        adapter.close()

        restarted = StorageAdapter(config=test_config, capability_probe=always_available)
        restarted.initialize()
        assert restarted.upgrade(FakeFileSelector(existing=db_path)).status == "upgraded"
        try:
            assert restarted.get_all_folders() == []
            notes = restarted.get_all_notes()
            assert sorted(n.id for n in notes) == sorted(note_ids)
            assert all(n.folder_id is None for n in notes)
        finally:
            restarted.close()
