"""In-memory storage backend."""

import logging
import threading
from typing import Dict, List, Optional, Sequence

from notepocket.exceptions import (
    ErrorCode,
    FolderNotFoundError,
    NoteNotFoundError,
    NoteValidationError,
)
from notepocket.models.schema import (
    BackendKind,
    Folder,
    FolderCreate,
    FolderUpdate,
    Note,
    NoteCreate,
    NoteUpdate,
)
from notepocket.storage.base import (
    StorageBackend,
    build_folder,
    build_note,
    dangling_folder_error,
    merge_folder,
    merge_note,
    note_matches,
    sort_folders,
    sort_notes,
)

logger = logging.getLogger(__name__)


class VolatileStore(StorageBackend):
    """Notes and folders held in process memory.

    Always available and never fails to initialize; nothing survives the
    process. All reads and writes happen under one lock, so a folder delete
    and the unfiling of its notes are a single step for readers.
    """

    kind = BackendKind.VOLATILE

    def __init__(self) -> None:
        self._notes: Dict[str, Note] = {}
        self._folders: Dict[str, Folder] = {}
        self._lock = threading.RLock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Mark the store ready; there is nothing that can fail."""
        with self._lock:
            self._initialized = True
        logger.info("Volatile store ready")

    def _check_folder_ref(self, folder_id: Optional[str]) -> None:
        if folder_id is not None and folder_id not in self._folders:
            raise dangling_folder_error(folder_id)

    def _require_note(self, note_id: str) -> Note:
        note = self._notes.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def _require_folder(self, folder_id: str) -> Folder:
        folder = self._folders.get(folder_id)
        if folder is None:
            raise FolderNotFoundError(folder_id)
        return folder

    def create_note(self, data: NoteCreate) -> Note:
        note = build_note(data)
        with self._lock:
            self._check_folder_ref(note.folder_id)
            self._notes[note.id] = note
        logger.debug(f"Created note {note.id}")
        return note.model_copy(deep=True)

    def update_note(self, note_id: str, updates: NoteUpdate) -> Note:
        with self._lock:
            current = self._require_note(note_id)
            updated = merge_note(current, updates)
            if updated.folder_id != current.folder_id:
                self._check_folder_ref(updated.folder_id)
            self._notes[note_id] = updated
        return updated.model_copy(deep=True)

    def delete_note(self, note_id: str) -> None:
        with self._lock:
            self._require_note(note_id)
            del self._notes[note_id]
        logger.debug(f"Deleted note {note_id}")

    def get_note(self, note_id: str) -> Note:
        with self._lock:
            return self._require_note(note_id).model_copy(deep=True)

    def _select(self, predicate) -> List[Note]:
        with self._lock:
            found = [n.model_copy(deep=True) for n in self._notes.values() if predicate(n)]
        return sort_notes(found)

    def get_all_notes(self) -> List[Note]:
        return self._select(lambda n: True)

    def search(self, query: str) -> List[Note]:
        needle = query.casefold()
        return self._select(lambda n: note_matches(n, needle))

    def notes_by_folder(self, folder_id: Optional[str]) -> List[Note]:
        return self._select(lambda n: n.folder_id == folder_id)

    def favorite_notes(self) -> List[Note]:
        return self._select(lambda n: n.is_favorite)

    def create_folder(self, data: FolderCreate) -> Folder:
        folder = build_folder(data)
        with self._lock:
            self._folders[folder.id] = folder
        logger.debug(f"Created folder {folder.id}")
        return folder.model_copy()

    def update_folder(self, folder_id: str, updates: FolderUpdate) -> Folder:
        with self._lock:
            updated = merge_folder(self._require_folder(folder_id), updates)
            self._folders[folder_id] = updated
        return updated.model_copy()

    def delete_folder(self, folder_id: str) -> None:
        with self._lock:
            self._require_folder(folder_id)
            unfiled = 0
            for note_id, note in self._notes.items():
                if note.folder_id == folder_id:
                    self._notes[note_id] = note.model_copy(update={"folder_id": None})
                    unfiled += 1
            del self._folders[folder_id]
        logger.debug(f"Deleted folder {folder_id}, unfiled {unfiled} notes")

    def get_folder(self, folder_id: str) -> Folder:
        with self._lock:
            return self._require_folder(folder_id).model_copy()

    def get_all_folders(self) -> List[Folder]:
        with self._lock:
            folders = [f.model_copy() for f in self._folders.values()]
        return sort_folders(folders)

    def bulk_load(self, folders: Sequence[Folder], notes: Sequence[Note]) -> None:
        with self._lock:
            folder_ids = set(self._folders)
            for folder in folders:
                if folder.id in folder_ids:
                    raise NoteValidationError(
                        f"Folder '{folder.id}' already exists",
                        field="id",
                        code=ErrorCode.FOLDER_VALIDATION_FAILED,
                    )
                folder_ids.add(folder.id)
            note_ids = set(self._notes)
            for note in notes:
                if note.id in note_ids:
                    raise NoteValidationError(f"Note '{note.id}' already exists", field="id")
                if note.folder_id is not None and note.folder_id not in folder_ids:
                    raise dangling_folder_error(note.folder_id)
                note_ids.add(note.id)
            # Validated up front so the load is all-or-nothing
            for folder in folders:
                self._folders[folder.id] = folder.model_copy()
            for note in notes:
                self._notes[note.id] = note.model_copy(deep=True)

    def count(self) -> Dict[str, int]:
        with self._lock:
            return {"notes": len(self._notes), "folders": len(self._folders)}

    def force_save(self) -> None:
        """Nothing to persist."""

    def close(self) -> None:
        with self._lock:
            self._notes.clear()
            self._folders.clear()
            self._initialized = False
