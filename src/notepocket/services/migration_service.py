"""One-shot migration of legacy key-value data into the storage adapter."""

import logging
from typing import Any, Dict, List, Tuple

from notepocket.exceptions import StorageError, ValidationError
from notepocket.models.schema import MigrationResult
from notepocket.observability import timed_operation
from notepocket.services.legacy_kv import (
    FOLDERS_KEY,
    NOTES_KEY,
    LegacyKVStore,
    normalize_legacy_folder,
    normalize_legacy_note,
)
from notepocket.services.replay import ReplayProgress, replay_records

logger = logging.getLogger(__name__)


class MigrationService:
    """Moves legacy notes and folders into the adapter exactly once.

    Safe to call repeatedly: after a completed run in this instance
    ``migrate()`` is a no-op, and legacy data is deleted only once it has
    been written, so a later process never imports it twice. A storage
    failure aborts the run and keeps the legacy data for the next attempt;
    that attempt resumes after the records the aborted run already stored.
    """

    def __init__(self, adapter: Any, kv_store: LegacyKVStore):
        self.adapter = adapter
        self.kv_store = kv_store
        self.has_run = False
        self._progress = ReplayProgress()

    def reset(self) -> None:
        """Allow ``migrate()`` to run again in this instance."""
        self.has_run = False

    def _read_collection(self, key: str) -> List[Any]:
        value = self.kv_store.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            logger.warning(f"Legacy '{key}' is not a list, nothing to migrate from it")
            return []
        return value

    def migration_needed(self) -> bool:
        """Whether the legacy store currently holds any records."""
        try:
            return bool(self._read_collection(NOTES_KEY) or self._read_collection(FOLDERS_KEY))
        except StorageError as e:
            logger.warning(f"Could not check legacy store: {e}")
            return False

    @staticmethod
    def _normalize(records: List[Any], normalize, label: str) -> Tuple[List[Dict[str, Any]], int]:
        good, skipped = [], 0
        for record in records:
            try:
                good.append(normalize(record))
            except ValidationError as e:
                skipped += 1
                logger.warning(f"migration: skipping legacy {label}: {e.message}")
        return good, skipped

    def migrate(self) -> MigrationResult:
        if self.has_run:
            return MigrationResult(success=True)

        with timed_operation("migrate") as op:
            try:
                raw_notes = self._read_collection(NOTES_KEY)
                raw_folders = self._read_collection(FOLDERS_KEY)
            except StorageError as e:
                logger.error(f"Migration could not read legacy data: {e}")
                op["error"] = e
                return MigrationResult(success=False)

            if not raw_notes and not raw_folders:
                self.has_run = True
                return MigrationResult(success=True)

            logger.info(
                f"Migrating {len(raw_folders)} folders and {len(raw_notes)} notes "
                f"from legacy storage"
            )
            folders, bad_folders = self._normalize(raw_folders, normalize_legacy_folder, "folder")
            notes, bad_notes = self._normalize(raw_notes, normalize_legacy_note, "note")

            try:
                replayed = replay_records(
                    self.adapter,
                    folders,
                    notes,
                    operation="migration",
                    stop_on_storage_error=True,
                    progress=self._progress,
                )
            except StorageError as e:
                logger.error(f"Migration aborted, legacy data kept: {e}")
                op["error"] = e
                return MigrationResult(
                    success=False,
                    notes_count=self._progress.result.imported_notes,
                    folders_count=self._progress.result.imported_folders,
                )

            result = MigrationResult(
                success=True,
                notes_count=replayed.imported_notes,
                folders_count=replayed.imported_folders,
                skipped_notes=bad_notes + replayed.skipped_notes,
                skipped_folders=bad_folders + replayed.skipped_folders,
            )
            op["notes"] = result.notes_count
            op["folders"] = result.folders_count

            if result.notes_count or result.folders_count:
                result.legacy_cleared = self._clear_legacy()
                if result.legacy_cleared:
                    self._progress = ReplayProgress()
            else:
                logger.warning("No legacy record could be migrated, legacy data kept")

            self.has_run = True
            logger.info(
                f"Migration completed: {result.notes_count} notes, "
                f"{result.folders_count} folders"
            )
            return result

    def _clear_legacy(self) -> bool:
        try:
            self.kv_store.delete(NOTES_KEY)
            self.kv_store.delete(FOLDERS_KEY)
        except StorageError as e:
            logger.error(f"Migrated data but could not clear legacy store: {e}")
            return False
        return True
