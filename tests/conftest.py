"""Common test fixtures for the NotePocket storage layer."""

import tempfile
from pathlib import Path

import pytest

from notepocket.config import WritePolicy, config
from notepocket.exceptions import WriteFailedError
from notepocket.services.legacy_kv import MemoryKVStore
from notepocket.storage import durable_store as durable_module
from notepocket.storage.adapter import StorageAdapter
from notepocket.storage.durable_store import DurableStore
from tests.fakes import FakeFileSelector, always_available, never_available


@pytest.fixture
def temp_dir():
    """Create a temporary directory for database files."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def test_config(temp_dir, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "base_dir", temp_dir)
    monkeypatch.setattr(config, "database_path", temp_dir / "notepocket.db")
    monkeypatch.setattr(config, "legacy_kv_path", None)
    monkeypatch.setattr(config, "write_policy", WritePolicy.WRITE_THROUGH)
    monkeypatch.setattr(config, "autosave_interval", 30.0)
    monkeypatch.setattr(config, "seed_demo_data", False)
    monkeypatch.setattr(config, "log_level", config.log_level)
    yield config


@pytest.fixture
def db_path(temp_dir):
    return temp_dir / "notes.db"


@pytest.fixture
def durable_store(db_path):
    """A write-through durable store on a fresh file."""
    store = DurableStore.create(db_path)
    yield store
    store.discard()


@pytest.fixture
def adapter(test_config):
    """An initialized adapter on the volatile store."""
    instance = StorageAdapter(config=test_config, capability_probe=always_available)
    instance.initialize()
    yield instance
    instance.close()


@pytest.fixture
def new_file_selector(db_path):
    """Selector that declines opening and creates ``db_path``."""
    return FakeFileSelector(new=db_path)


@pytest.fixture
def durable_adapter(test_config, new_file_selector):
    """An adapter already upgraded to a durable store."""
    instance = StorageAdapter(config=test_config, capability_probe=always_available)
    instance.initialize()
    result = instance.upgrade(new_file_selector)
    assert result.status == "upgraded"
    yield instance
    instance.close()


@pytest.fixture
def unsupported_adapter(test_config):
    instance = StorageAdapter(config=test_config, capability_probe=never_available)
    instance.initialize()
    yield instance
    instance.close()


@pytest.fixture
def legacy_store():
    """Legacy KV data with two folders and three notes."""
    return MemoryKVStore(
        {
            "folders": [
                {"id": "f-work", "name": "Work", "color": "#1976d2"},
                {"id": "f-home", "name": "Home", "color": "#388e3c"},
            ],
            "notes": [
                {
                    "id": "n1",
                    "title": "Standup",
                    "content": "Daily sync",
                    "type": "text",
                    "tags": ["meeting"],
                    "folderId": "f-work",
                },
                {
                    "id": "n2",
                    "title": "Receipt",
                    "content": "",
                    "type": "image",
                    "imageUrl": "blob:receipt",
                    "fileName": "receipt.png",
                    "fileSize": 2048,
                    "fileType": "image/png",
                    "folderId": "f-home",
                },
                {
                    "id": "n3",
                    "title": "Loose thought",
                    "type": "text",
                    "tags": "idea, later",
                    "isFavorite": True,
                },
            ],
        }
    )


@pytest.fixture
def fail_nth_write(monkeypatch):
    """Make the n-th durable image write from now on fail, once."""
    def install(n):
        calls = []
        real_write = durable_module.write_image

        def flaky_write(connection, path):
            calls.append(path)
            if len(calls) == n:
                raise WriteFailedError("disk full", path=str(path))
            return real_write(connection, path)
        monkeypatch.setattr(durable_module, "write_image", flaky_write)
        return calls
    return install
