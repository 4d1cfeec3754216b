"""Tests for the observability module.

Tests for metrics collection, logging configuration and operation tracing.
"""
import logging
from logging.handlers import RotatingFileHandler

import pytest

from notepocket.exceptions import NoteNotFoundError
from notepocket.observability import (
    MetricsCollector,
    configure_logging,
    metrics,
    persistence_metrics,
    timed_operation,
    traced,
)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_records_success_and_failure(self):
        collector = MetricsCollector()
        collector.record_operation("flush", 10.0, True)
        collector.record_operation("flush", 30.0, False, "disk full")

        data = collector.get_metrics()["flush"]
        assert data["count"] == 2
        assert data["success_count"] == 1
        assert data["error_count"] == 1
        assert data["avg_duration_ms"] == 20.0
        assert data["max_duration_ms"] == 30.0
        assert data["last_error"] == "disk full"
        assert data["last_error_time"] is not None

    def test_summary(self):
        collector = MetricsCollector()
        collector.record_operation("create_note", 1.0, True)
        collector.record_operation("upgrade", 1.0, False, "x")
        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_errors"] == 1
        assert summary["operations_tracked"] == ["create_note", "upgrade"]

    def test_reset(self):
        collector = MetricsCollector()
        collector.record_operation("flush", 1.0, True)
        collector.reset()
        assert collector.get_metrics() == {}


class TestTimedOperation:
    def test_records_into_global_metrics(self):
        metrics.reset()
        with timed_operation("unit_op", path="x") as op:
            op["bytes"] = 10
        assert metrics.get_metrics()["unit_op"]["success_count"] == 1

    def test_failure_is_recorded_and_reraised(self):
        metrics.reset()
        with pytest.raises(ValueError):
            with timed_operation("failing_op"):
                raise ValueError("boom")
        data = metrics.get_metrics()["failing_op"]
        assert data["error_count"] == 1
        assert data["last_error"] == "boom"

    def test_reported_error_counts_as_failure(self):
        metrics.reset()
        with timed_operation("upgrade") as op:
            op["error"] = "selection cancelled"
        data = metrics.get_metrics()["upgrade"]
        assert data["error_count"] == 1
        assert data["last_error"] == "selection cancelled"

    def test_persistence_metrics_only_cover_persistence(self):
        metrics.reset()
        with timed_operation("flush"):
            pass
        with timed_operation("create_note"):
            pass
        assert list(persistence_metrics()) == ["flush"]
        assert metrics.get_operation("upgrade") is None


class TestTraced:
    def test_traced_adapter_operations(self, adapter):
        metrics.reset()
        adapter.create_note({"title": "Traced"})
        adapter.get_all_notes()
        with pytest.raises(NoteNotFoundError):
            adapter.get_note("missing")

        data = metrics.get_metrics()
        assert data["create_note"]["success_count"] == 1
        assert data["get_all_notes"]["count"] == 1
        assert data["get_note"]["error_count"] == 1

    def test_custom_operation_name(self):
        metrics.reset()

        @traced("renamed")
        def work():
            return [1, 2, 3]

        assert work() == [1, 2, 3]
        assert "renamed" in metrics.get_metrics()


class TestStatusPersistence:
    def test_volatile_status_has_only_operations(self, adapter):
        metrics.reset()
        assert adapter.status().persistence == {"operations": {}}

    def test_failed_upgrade_is_reported(self, unsupported_adapter, new_file_selector):
        metrics.reset()
        result = unsupported_adapter.upgrade(new_file_selector)
        assert result.status == "failed"

        upgrade = unsupported_adapter.status().persistence["operations"]["upgrade"]
        assert upgrade["error_count"] == 1
        assert "STORAGE_UNSUPPORTED" in upgrade["last_error"]

    def test_durable_status_reports_flushes(self, durable_adapter, db_path):
        metrics.reset()
        durable_adapter.create_note({"title": "Saved"})

        persistence = durable_adapter.status().to_dict()["persistence"]
        assert persistence["path"] == str(db_path)
        assert persistence["write_policy"] == "write_through"
        assert persistence["dirty"] is False
        assert persistence["last_saved_at"] is not None
        assert persistence["last_error"] is None
        assert persistence["operations"]["flush"]["success_count"] == 1


class TestConfigureLogging:
    @pytest.fixture
    def clean_logger(self):
        logger = logging.getLogger("notepocket")
        saved = list(logger.handlers)
        saved_level = logger.level
        yield logger
        for handler in logger.handlers:
            if handler not in saved:
                handler.close()
        logger.handlers = saved
        logger.setLevel(saved_level)

    def test_writes_rotating_log_file(self, temp_dir, clean_logger):
        log_dir = configure_logging(log_dir=temp_dir / "logs", level=logging.DEBUG, console=False)
        assert log_dir == temp_dir / "logs"
        assert any(isinstance(h, RotatingFileHandler) for h in clean_logger.handlers)

        logging.getLogger("notepocket.storage").info("hello from the storage layer")
        for handler in clean_logger.handlers:
            handler.flush()
        text = (log_dir / "notepocket.log").read_text(encoding="utf-8")
        assert "hello from the storage layer" in text
