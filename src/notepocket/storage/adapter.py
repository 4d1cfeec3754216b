"""Single entry point for note and folder storage.

``StorageAdapter`` owns exactly one active backend. It starts on the
volatile store, which needs no setup, and can be upgraded to the durable
file-backed store at runtime:

    UNINITIALIZED -> initialize() -> VOLATILE_ACTIVE
    VOLATILE_ACTIVE -> upgrade() -> MIGRATING -> DURABLE_ACTIVE
                                             \\-> VOLATILE_ACTIVE (on failure)

Capability probing and file selection happen without holding the data lock,
so reads keep working while the user picks a file. Copying the data and
switching backends happens under the data lock, so no caller ever sees a mix
of the two stores.
"""

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from notepocket.config import NotePocketConfig
from notepocket.config import config as default_config
from notepocket.exceptions import (
    ErrorCode,
    FileSelectionCancelledError,
    NotePocketError,
    StorageError,
)
from notepocket.models.schema import (
    AdapterState,
    Folder,
    FolderCreate,
    FolderUpdate,
    ImportResult,
    Note,
    NoteCreate,
    NoteUpdate,
    StoreStatus,
    UpgradeResult,
)
from notepocket.observability import persistence_metrics, timed_operation, traced
from notepocket.services.demo_data import seed_demo_data
from notepocket.services.replay import replay_records
from notepocket.services.transfer_service import validate_import_records
from notepocket.storage.base import StorageBackend, coerce_model
from notepocket.storage.durable_store import DurableStore
from notepocket.storage.file_selection import (
    CapabilityProbe,
    FileSelector,
    PathFileSelector,
    filesystem_capability_probe,
    open_durable_store,
)
from notepocket.storage.volatile_store import VolatileStore

logger = logging.getLogger(__name__)

NoteInput = Union[NoteCreate, Dict[str, Any]]
NoteUpdateInput = Union[NoteUpdate, Dict[str, Any]]
FolderInput = Union[FolderCreate, Dict[str, Any]]
FolderUpdateInput = Union[FolderUpdate, Dict[str, Any]]


class StorageAdapter:
    """Routes every storage call to the active backend.

    Args:
        config: Settings; defaults to the module-level ``config``.
        capability_probe: Reports whether durable file storage is usable.
        file_selector: Default selector for ``upgrade()``. When omitted the
            configured database path is used.
    """

    def __init__(
        self,
        config: Optional[NotePocketConfig] = None,
        capability_probe: Optional[CapabilityProbe] = None,
        file_selector: Optional[FileSelector] = None,
    ):
        self.config = config or default_config
        self.capability_probe = capability_probe or filesystem_capability_probe
        self.file_selector = file_selector
        self._lock = threading.RLock()
        self._upgrade_lock = threading.Lock()
        self._state = AdapterState.UNINITIALIZED
        self._backend: Optional[StorageBackend] = None

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def backend(self) -> Optional[StorageBackend]:
        """The active backend, or None before ``initialize()``."""
        return self._backend

    def _active(self) -> StorageBackend:
        backend = self._backend
        if backend is None:
            raise StorageError(
                "Storage has not been initialized",
                operation="access",
                code=ErrorCode.STORAGE_NOT_INITIALIZED,
            )
        return backend

    # Lifecycle

    def initialize(self) -> StoreStatus:
        """Activate the volatile store. Idempotent and never fails."""
        with self._lock:
            if self._state != AdapterState.UNINITIALIZED:
                return self.status()
            volatile = VolatileStore()
            volatile.initialize()
            self._backend = volatile
            self._state = AdapterState.VOLATILE_ACTIVE
            logger.info("Storage initialized with the volatile store")
            if self.config.seed_demo_data:
                seed_demo_data(self)
            return self.status()

    def upgrade(self, file_selector: Optional[FileSelector] = None) -> UpgradeResult:
        """Move all data to the durable store and switch to it.

        Failures are reported in the result, never half-applied: on anything
        but ``"upgraded"`` the volatile store stays active and unchanged.
        """
        with timed_operation("upgrade") as op:
            result = self._upgrade(file_selector)
            op["status"] = result.status
            if result.status == "failed":
                op["error"] = result.error
            return result

    def _upgrade(self, file_selector: Optional[FileSelector]) -> UpgradeResult:
        selector = (
            file_selector
            or self.file_selector
            or PathFileSelector(self.config.get_database_path())
        )
        with self._upgrade_lock:
            with self._lock:
                if self._state == AdapterState.DURABLE_ACTIVE:
                    return UpgradeResult(status="already_durable")
                self._active()
                self._state = AdapterState.MIGRATING

            durable: Optional[DurableStore] = None
            try:
                durable = open_durable_store(selector, self.capability_probe, self.config)
                with self._lock:
                    volatile = self._active()
                    folders = volatile.get_all_folders()
                    notes = volatile.get_all_notes()
                    durable.bulk_load(folders, notes)
                    if durable.dirty:
                        durable.force_save()
                    self._backend = durable
                    self._state = AdapterState.DURABLE_ACTIVE
                    volatile.close()
            except FileSelectionCancelledError as e:
                self._abort_upgrade(durable)
                logger.info("Upgrade declined, staying on the volatile store")
                return UpgradeResult(status="declined", error=e)
            except NotePocketError as e:
                self._abort_upgrade(durable)
                logger.warning(f"Upgrade failed, staying on the volatile store: {e}")
                return UpgradeResult(status="failed", error=e)
            except Exception:
                self._abort_upgrade(durable)
                raise

        logger.info(
            f"Upgraded to durable store {durable.path} "
            f"({len(notes)} notes, {len(folders)} folders)"
        )
        return UpgradeResult(
            status="upgraded", migrated_notes=len(notes), migrated_folders=len(folders)
        )

    def _abort_upgrade(self, durable: Optional[DurableStore]) -> None:
        if durable is not None:
            durable.discard()
        with self._lock:
            self._state = AdapterState.VOLATILE_ACTIVE

    def status(self) -> StoreStatus:
        with self._lock:
            backend = self._backend
            persistence = backend.info() if backend else {}
            persistence["operations"] = persistence_metrics()
            return StoreStatus(
                backend=backend.kind if backend else None,
                initialized=self._state != AdapterState.UNINITIALIZED,
                state=self._state,
                durable_path=backend.location if backend else None,
                persistence=persistence,
            )

    def force_save(self) -> None:
        """Persist pending changes of the active backend now."""
        with self._lock:
            self._active().force_save()

    def close(self) -> None:
        """Close the active backend, flushing durable data first.

        If the final flush fails the backend stays active and the error
        propagates.
        """
        with self._lock:
            backend = self._backend
            if backend is None:
                return
            backend.close()
            self._backend = None
            self._state = AdapterState.UNINITIALIZED
        logger.info("Storage closed")

    # Notes

    @traced()
    def create_note(self, data: NoteInput) -> Note:
        note_in = coerce_model(NoteCreate, data)
        with self._lock:
            return self._active().create_note(note_in)

    @traced()
    def update_note(self, note_id: str, updates: NoteUpdateInput) -> Note:
        changes = coerce_model(NoteUpdate, updates)
        with self._lock:
            return self._active().update_note(note_id, changes)

    @traced()
    def delete_note(self, note_id: str) -> None:
        with self._lock:
            self._active().delete_note(note_id)

    @traced()
    def get_note(self, note_id: str) -> Note:
        with self._lock:
            return self._active().get_note(note_id)

    @traced()
    def get_all_notes(self) -> List[Note]:
        with self._lock:
            return self._active().get_all_notes()

    @traced()
    def search(self, query: str) -> List[Note]:
        with self._lock:
            return self._active().search(query)

    @traced()
    def notes_by_folder(self, folder_id: Optional[str]) -> List[Note]:
        with self._lock:
            return self._active().notes_by_folder(folder_id)

    @traced()
    def favorite_notes(self) -> List[Note]:
        with self._lock:
            return self._active().favorite_notes()

    # Folders

    @traced()
    def create_folder(self, data: FolderInput) -> Folder:
        folder_in = coerce_model(FolderCreate, data)
        with self._lock:
            return self._active().create_folder(folder_in)

    @traced()
    def update_folder(self, folder_id: str, updates: FolderUpdateInput) -> Folder:
        changes = coerce_model(FolderUpdate, updates)
        with self._lock:
            return self._active().update_folder(folder_id, changes)

    @traced()
    def delete_folder(self, folder_id: str) -> None:
        with self._lock:
            self._active().delete_folder(folder_id)

    @traced()
    def get_folder(self, folder_id: str) -> Folder:
        with self._lock:
            return self._active().get_folder(folder_id)

    @traced()
    def get_all_folders(self) -> List[Folder]:
        with self._lock:
            return self._active().get_all_folders()

    # Bulk

    @traced()
    def import_data(
        self,
        notes: Sequence[Mapping[str, Any]],
        folders: Sequence[Mapping[str, Any]],
    ) -> ImportResult:
        """Replay exported records with fresh ids.

        The payload is checked structurally before anything is written;
        records that then fail validation or storage are skipped and
        counted.

        Raises:
            ValidationError: If the payload shape is wrong.
        """
        validate_import_records(notes, folders)
        with self._lock:
            self._active()
            return replay_records(self, folders, notes, operation="import")
