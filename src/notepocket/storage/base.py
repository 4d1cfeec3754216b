"""Backend contract shared by the volatile and durable stores."""

import datetime
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from notepocket.exceptions import ErrorCode, NoteValidationError
from notepocket.models.schema import (
    BackendKind,
    Folder,
    FolderCreate,
    FolderUpdate,
    Note,
    NoteCreate,
    NoteUpdate,
    utc_now,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class StorageBackend(ABC):
    """CRUD contract every storage backend implements.

    Lookups by id raise ``RecordNotFoundError`` subclasses; invalid data or
    dangling folder references raise ``NoteValidationError``. Returned records
    are independent copies that callers may mutate freely.
    """

    kind: BackendKind

    @property
    def location(self) -> Optional[str]:
        """Where the backend persists data, or None for memory-only stores."""
        return None

    def info(self) -> Dict[str, Any]:
        """Persistence details of the backend; empty for memory-only stores."""
        return {}

    # Notes

    @abstractmethod
    def create_note(self, data: NoteCreate) -> Note:
        """Create a note, minting its id and timestamps."""

    @abstractmethod
    def update_note(self, note_id: str, updates: NoteUpdate) -> Note:
        """Merge the explicitly set fields of ``updates`` into a note."""

    @abstractmethod
    def delete_note(self, note_id: str) -> None:
        """Delete a note."""

    @abstractmethod
    def get_note(self, note_id: str) -> Note:
        """Get a note by id."""

    @abstractmethod
    def get_all_notes(self) -> List[Note]:
        """All notes, most recently updated first."""

    @abstractmethod
    def search(self, query: str) -> List[Note]:
        """Case-insensitive substring match over title, content and tags."""

    @abstractmethod
    def notes_by_folder(self, folder_id: Optional[str]) -> List[Note]:
        """Notes filed in a folder; ``None`` selects unfiled notes."""

    @abstractmethod
    def favorite_notes(self) -> List[Note]:
        """Notes flagged as favorite."""

    # Folders

    @abstractmethod
    def create_folder(self, data: FolderCreate) -> Folder:
        """Create a folder, minting its id and timestamp."""

    @abstractmethod
    def update_folder(self, folder_id: str, updates: FolderUpdate) -> Folder:
        """Merge the explicitly set fields of ``updates`` into a folder."""

    @abstractmethod
    def delete_folder(self, folder_id: str) -> None:
        """Delete a folder and unfile every note that referenced it."""

    @abstractmethod
    def get_folder(self, folder_id: str) -> Folder:
        """Get a folder by id."""

    @abstractmethod
    def get_all_folders(self) -> List[Folder]:
        """All folders ordered by name."""

    # Lifecycle

    @abstractmethod
    def bulk_load(self, folders: Sequence[Folder], notes: Sequence[Note]) -> None:
        """Insert complete records verbatim (ids and timestamps kept).

        Folders are inserted before notes. Either every record is stored or
        none is.
        """

    @abstractmethod
    def force_save(self) -> None:
        """Persist pending changes now."""

    @abstractmethod
    def close(self) -> None:
        """Release resources, persisting pending changes first."""


def coerce_model(model: Type[M], data: Union[M, Dict[str, Any]]) -> M:
    """Accept either a model instance or a plain dict of its fields."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise validation_error_from(e, model.__name__) from e


def validation_error_from(
    exc: PydanticValidationError, entity: str
) -> NoteValidationError:
    """Translate a pydantic error into the package's validation error."""
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    code = ErrorCode.NOTE_VALIDATION_FAILED
    if entity.startswith("Folder"):
        code = ErrorCode.FOLDER_VALIDATION_FAILED
    elif field == "title":
        code = ErrorCode.NOTE_TITLE_REQUIRED
    elif field == "type":
        code = ErrorCode.INVALID_NOTE_TYPE
    return NoteValidationError(
        f"Invalid {entity}: {first.get('msg', str(exc))}",
        field=field,
        value=first.get("input"),
        code=code,
    )


def dangling_folder_error(folder_id: str) -> NoteValidationError:
    return NoteValidationError(
        f"Folder '{folder_id}' does not exist",
        field="folder_id",
        value=folder_id,
        code=ErrorCode.FOLDER_REFERENCE_INVALID,
    )


def build_note(data: NoteCreate, now: Optional[datetime.datetime] = None) -> Note:
    """Turn creation input into a full note with a fresh id and timestamps."""
    now = now or utc_now()
    return Note(**data.model_dump(), created_at=now, updated_at=now)


def build_folder(data: FolderCreate, now: Optional[datetime.datetime] = None) -> Folder:
    return Folder(**data.model_dump(), created_at=now or utc_now())


def merge_note(note: Note, updates: NoteUpdate) -> Note:
    """Apply a partial update and bump ``updated_at``.

    ``updated_at`` never moves backwards, even if the clock does.
    """
    merged = note.model_dump()
    merged.update(updates.changes())
    merged["updated_at"] = max(utc_now(), note.updated_at)
    try:
        return Note.model_validate(merged)
    except PydanticValidationError as e:
        raise validation_error_from(e, "Note") from e


def merge_folder(folder: Folder, updates: FolderUpdate) -> Folder:
    merged = folder.model_dump()
    merged.update(updates.changes())
    try:
        return Folder.model_validate(merged)
    except PydanticValidationError as e:
        raise validation_error_from(e, "Folder") from e


def note_matches(note: Note, needle: str) -> bool:
    """Case-insensitive substring match; ``needle`` must already be casefolded."""
    if needle in note.title.casefold() or needle in note.content.casefold():
        return True
    return any(needle in tag.casefold() for tag in note.tags)


def sort_notes(notes: List[Note]) -> List[Note]:
    """Most recently updated first; ties by creation time, then id."""
    ordered = sorted(notes, key=lambda n: n.id)
    ordered.sort(key=lambda n: (n.updated_at, n.created_at), reverse=True)
    return ordered


def sort_folders(folders: List[Folder]) -> List[Folder]:
    return sorted(folders, key=lambda f: (f.name, f.id))
