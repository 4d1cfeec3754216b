"""File-backed storage backend.

The working copy of the data is an in-memory SQLite database accessed
through SQLAlchemy. The whole database is persisted as one image file (see
``image_file``) according to the store's write policy:

- ``WritePolicy.WRITE_THROUGH``: every mutation writes the image before it
  returns. Nothing that returned successfully can be lost.
- ``WritePolicy.PERIODIC``: mutations mark the store dirty and an
  ``AutosaveTask`` writes the image every ``autosave_interval`` seconds.
  ``force_save()`` writes immediately and ``close()`` cancels the task and
  writes once more, so at most ``autosave_interval`` seconds of changes are
  lost if the process dies without closing the store.

A failed write raises ``WriteFailedError``, keeps the previous image on disk
and leaves the store dirty so the next write retries.
"""

import datetime
import logging
import threading
from contextlib import contextmanager
from datetime import timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from notepocket.config import WritePolicy
from notepocket.exceptions import (
    DeserializationFailedError,
    ErrorCode,
    FolderNotFoundError,
    NoteNotFoundError,
    NoteValidationError,
    StorageError,
    WriteFailedError,
)
from notepocket.models.db_models import (
    DBEmbeddedImage,
    DBFolder,
    DBNote,
    DBNoteTag,
    check_schema,
    create_memory_engine,
    get_session_factory,
    init_schema,
)
from notepocket.models.schema import (
    BackendKind,
    EmbeddedImage,
    Folder,
    FolderCreate,
    FolderUpdate,
    Note,
    NoteCreate,
    NoteUpdate,
    ensure_timezone_aware,
    utc_now,
)
from notepocket.observability import timed_operation
from notepocket.storage.autosave import AutosaveTask
from notepocket.storage.base import (
    StorageBackend,
    build_folder,
    build_note,
    dangling_folder_error,
    merge_folder,
    merge_note,
)
from notepocket.storage.image_file import load_image, write_image

logger = logging.getLogger(__name__)

_NOTE_ORDER = (DBNote.updated_at.desc(), DBNote.created_at.desc(), DBNote.id.asc())
_FOLDER_ORDER = (DBFolder.name.asc(), DBFolder.id.asc())

DEFAULT_AUTOSAVE_INTERVAL = 30.0


def _to_db_time(value: datetime.datetime) -> datetime.datetime:
    """SQLite has no zone support; store naive UTC."""
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class DurableStore(StorageBackend):
    """Notes and folders persisted to a single database image file.

    Use ``DurableStore.open()`` for an existing image and
    ``DurableStore.create()`` for a new one.
    """

    kind = BackendKind.DURABLE

    def __init__(
        self,
        path: Union[str, Path],
        engine: Any,
        write_policy: WritePolicy = WritePolicy.WRITE_THROUGH,
        autosave_interval: float = DEFAULT_AUTOSAVE_INTERVAL,
    ):
        """Wrap an engine that already holds a valid schema.

        Args:
            path: Image file this store saves to.
            engine: In-memory SQLite engine from ``create_memory_engine()``.
            write_policy: When the image file is rewritten.
            autosave_interval: Seconds between periodic writes.
        """
        self.path = Path(path)
        self.engine = engine
        self.session_factory = get_session_factory(engine)
        self.write_policy = WritePolicy(write_policy)
        self._lock = threading.RLock()
        self._dirty = False
        self._closed = False
        self.last_saved_at: Optional[datetime.datetime] = None
        self.last_error: Optional[WriteFailedError] = None
        self._autosave: Optional[AutosaveTask] = None
        if self.write_policy == WritePolicy.PERIODIC:
            self._autosave = AutosaveTask(autosave_interval, self._flush_if_dirty)

    @classmethod
    def open(
        cls,
        path: Union[str, Path],
        write_policy: WritePolicy = WritePolicy.WRITE_THROUGH,
        autosave_interval: float = DEFAULT_AUTOSAVE_INTERVAL,
    ) -> "DurableStore":
        """Load an existing image.

        Raises:
            DeserializationFailedError: If the file is not a valid image.
                An unreadable file is never treated as an empty database.
        """
        path = Path(path)
        engine = create_memory_engine()
        try:
            raw = engine.raw_connection()
            try:
                load_image(path, raw.driver_connection)
            finally:
                raw.close()
            problems = check_schema(engine)
        except DeserializationFailedError:
            engine.dispose()
            raise
        except SQLAlchemyError as e:
            engine.dispose()
            raise DeserializationFailedError(
                f"{path.name} is corrupt", path=str(path), original_error=e
            ) from e

        if problems:
            engine.dispose()
            raise DeserializationFailedError(
                f"{path.name} is not a valid NotePocket database: {'; '.join(problems)}",
                path=str(path),
            )

        store = cls(path, engine, write_policy, autosave_interval)
        store._start_autosave()
        logger.info(f"Opened durable store {path} (policy={store.write_policy.value})")
        return store

    @classmethod
    def create(
        cls,
        path: Union[str, Path],
        write_policy: WritePolicy = WritePolicy.WRITE_THROUGH,
        autosave_interval: float = DEFAULT_AUTOSAVE_INTERVAL,
    ) -> "DurableStore":
        """Initialize an empty schema and write it to ``path``.

        Raises:
            WriteFailedError: If the initial write fails.
        """
        engine = create_memory_engine()
        init_schema(engine)
        store = cls(path, engine, write_policy, autosave_interval)
        try:
            store.force_save()
        except WriteFailedError:
            engine.dispose()
            raise
        store._start_autosave()
        logger.info(f"Created durable store {path} (policy={store.write_policy.value})")
        return store

    @property
    def location(self) -> Optional[str]:
        return str(self.path)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def closed(self) -> bool:
        return self._closed

    def _start_autosave(self) -> None:
        if self._autosave is not None:
            self._autosave.start()

    # Persistence

    def _flush(self) -> None:
        """Write the image now. Caller must hold the lock."""
        self._ensure_open()
        raw = self.engine.raw_connection()
        try:
            with timed_operation("flush", path=self.path.name) as op:
                op["bytes"] = write_image(raw.driver_connection, self.path)
        except WriteFailedError as e:
            self.last_error = e
            logger.error(f"Durable flush failed, changes kept in memory: {e}")
            raise
        finally:
            raw.close()
        self._dirty = False
        self.last_saved_at = utc_now()
        self.last_error = None

    def _flush_if_dirty(self) -> None:
        with self._lock:
            if self._dirty and not self._closed:
                self._flush()

    def _mark_dirty(self, record: Optional[Any] = None) -> None:
        """Record a committed mutation; ``record`` is what it stored, if anything."""
        self._dirty = True
        if self.write_policy == WritePolicy.WRITE_THROUGH:
            try:
                self._flush()
            except WriteFailedError as e:
                e.record = record
                raise

    def force_save(self) -> None:
        """Write the image immediately, whatever the write policy."""
        with self._lock:
            self._flush()

    def close(self) -> None:
        """Stop autosave, write pending changes and release the engine.

        If the final write fails the store stays open with autosave running
        again and ``WriteFailedError`` propagates, so the caller can retry.
        """
        if self._autosave is not None:
            self._autosave.cancel()
        with self._lock:
            if self._closed:
                return
            if self._dirty:
                try:
                    self._flush()
                except WriteFailedError:
                    self._start_autosave()
                    raise
            self._closed = True
            self.engine.dispose()
        logger.info(f"Closed durable store {self.path}")

    def discard(self) -> None:
        """Release the store without writing anything."""
        if self._autosave is not None:
            self._autosave.cancel()
        with self._lock:
            if not self._closed:
                self._closed = True
                self.engine.dispose()
        logger.debug(f"Discarded durable store {self.path}")

    def info(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "write_policy": self.write_policy.value,
            "dirty": self._dirty,
            "last_saved_at": self.last_saved_at.isoformat() if self.last_saved_at else None,
            "autosave_running": bool(self._autosave and self._autosave.running),
            "last_error": self.last_error.message if self.last_error else None,
        }

    # Helpers

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError(
                "Durable store is closed",
                operation="access",
                path=str(self.path),
                code=ErrorCode.STORAGE_NOT_INITIALIZED,
            )

    @contextmanager
    def _session(self, operation: str):
        """Locked session; database errors surface as StorageError."""
        with self._lock:
            self._ensure_open()
            with self.session_factory() as session:
                try:
                    yield session
                except SQLAlchemyError as e:
                    session.rollback()
                    raise StorageError(
                        f"Database operation '{operation}' failed",
                        operation=operation,
                        code=ErrorCode.STORAGE_WRITE_FAILED,
                        original_error=e,
                    ) from e

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content,
            type=db_note.type,
            tags=[t.name for t in db_note.tags],
            folder_id=db_note.folder_id,
            is_favorite=bool(db_note.is_favorite),
            file_url=db_note.file_url,
            file_name=db_note.file_name,
            file_size=db_note.file_size,
            file_mime_type=db_note.file_mime_type,
            embedded_images=[
                EmbeddedImage(
                    id=img.image_id,
                    url=img.url,
                    alt=img.alt,
                    file_name=img.file_name,
                    file_size=img.file_size,
                    width=img.width,
                    height=img.height,
                )
                for img in db_note.embedded_images
            ],
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    @staticmethod
    def _apply_note(db_note: DBNote, note: Note) -> None:
        db_note.title = note.title
        db_note.content = note.content
        db_note.type = note.type.value
        db_note.folder_id = note.folder_id
        db_note.is_favorite = note.is_favorite
        db_note.file_url = note.file_url
        db_note.file_name = note.file_name
        db_note.file_size = note.file_size
        db_note.file_mime_type = note.file_mime_type
        db_note.created_at = _to_db_time(note.created_at)
        db_note.updated_at = _to_db_time(note.updated_at)
        db_note.tags = [
            DBNoteTag(position=i, name=name) for i, name in enumerate(note.tags)
        ]
        db_note.embedded_images = [
            DBEmbeddedImage(
                position=i,
                image_id=img.id,
                url=img.url,
                alt=img.alt,
                file_name=img.file_name,
                file_size=img.file_size,
                width=img.width,
                height=img.height,
            )
            for i, img in enumerate(note.embedded_images)
        ]

    @staticmethod
    def _db_folder_to_model(db_folder: DBFolder) -> Folder:
        return Folder(
            id=db_folder.id,
            name=db_folder.name,
            color=db_folder.color,
            created_at=ensure_timezone_aware(db_folder.created_at),
        )

    @staticmethod
    def _folder_to_db(folder: Folder) -> DBFolder:
        return DBFolder(
            id=folder.id,
            name=folder.name,
            color=folder.color,
            created_at=_to_db_time(folder.created_at),
        )

    def _query_notes(self, *criteria: Any) -> List[Note]:
        with self._session("query_notes") as session:
            stmt = select(DBNote)
            if criteria:
                stmt = stmt.where(*criteria)
            rows = session.execute(stmt.order_by(*_NOTE_ORDER)).scalars().all()
            return [self._db_note_to_model(row) for row in rows]

    # Notes

    def create_note(self, data: NoteCreate) -> Note:
        note = build_note(data)
        with self._lock:
            with self._session("create_note") as session:
                if note.folder_id is not None and session.get(DBFolder, note.folder_id) is None:
                    raise dangling_folder_error(note.folder_id)
                db_note = DBNote(id=note.id)
                self._apply_note(db_note, note)
                session.add(db_note)
                session.commit()
            self._mark_dirty(note)
        logger.debug(f"Created note {note.id}")
        return note

    def update_note(self, note_id: str, updates: NoteUpdate) -> Note:
        with self._lock:
            with self._session("update_note") as session:
                db_note = session.get(DBNote, note_id)
                if db_note is None:
                    raise NoteNotFoundError(note_id)
                current = self._db_note_to_model(db_note)
                updated = merge_note(current, updates)
                if (
                    updated.folder_id != current.folder_id
                    and updated.folder_id is not None
                    and session.get(DBFolder, updated.folder_id) is None
                ):
                    raise dangling_folder_error(updated.folder_id)
                self._apply_note(db_note, updated)
                session.commit()
            self._mark_dirty(updated)
        return updated

    def delete_note(self, note_id: str) -> None:
        with self._lock:
            with self._session("delete_note") as session:
                db_note = session.get(DBNote, note_id)
                if db_note is None:
                    raise NoteNotFoundError(note_id)
                session.delete(db_note)
                session.commit()
            self._mark_dirty()
        logger.debug(f"Deleted note {note_id}")

    def get_note(self, note_id: str) -> Note:
        with self._session("get_note") as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                raise NoteNotFoundError(note_id)
            return self._db_note_to_model(db_note)

    def get_all_notes(self) -> List[Note]:
        return self._query_notes()

    def search(self, query: str) -> List[Note]:
        needle = query.casefold()
        return self._query_notes(
            or_(
                func.instr(func.casefold(DBNote.title), needle) > 0,
                func.instr(func.casefold(DBNote.content), needle) > 0,
                DBNote.tags.any(func.instr(func.casefold(DBNoteTag.name), needle) > 0),
            )
        )

    def notes_by_folder(self, folder_id: Optional[str]) -> List[Note]:
        if folder_id is None:
            return self._query_notes(DBNote.folder_id.is_(None))
        return self._query_notes(DBNote.folder_id == folder_id)

    def favorite_notes(self) -> List[Note]:
        return self._query_notes(DBNote.is_favorite.is_(True))

    # Folders

    def create_folder(self, data: FolderCreate) -> Folder:
        folder = build_folder(data)
        with self._lock:
            with self._session("create_folder") as session:
                session.add(self._folder_to_db(folder))
                session.commit()
            self._mark_dirty(folder)
        logger.debug(f"Created folder {folder.id}")
        return folder

    def update_folder(self, folder_id: str, updates: FolderUpdate) -> Folder:
        with self._lock:
            with self._session("update_folder") as session:
                db_folder = session.get(DBFolder, folder_id)
                if db_folder is None:
                    raise FolderNotFoundError(folder_id)
                updated = merge_folder(self._db_folder_to_model(db_folder), updates)
                db_folder.name = updated.name
                db_folder.color = updated.color
                session.commit()
            self._mark_dirty(updated)
        return updated

    def delete_folder(self, folder_id: str) -> None:
        with self._lock:
            with self._session("delete_folder") as session:
                db_folder = session.get(DBFolder, folder_id)
                if db_folder is None:
                    raise FolderNotFoundError(folder_id)
                # Unfile and delete in one transaction
                result = session.execute(
                    update(DBNote)
                    .where(DBNote.folder_id == folder_id)
                    .values(folder_id=None)
                )
                session.delete(db_folder)
                session.commit()
            self._mark_dirty()
        logger.debug(f"Deleted folder {folder_id}, unfiled {result.rowcount} notes")

    def get_folder(self, folder_id: str) -> Folder:
        with self._session("get_folder") as session:
            db_folder = session.get(DBFolder, folder_id)
            if db_folder is None:
                raise FolderNotFoundError(folder_id)
            return self._db_folder_to_model(db_folder)

    def get_all_folders(self) -> List[Folder]:
        with self._session("get_all_folders") as session:
            rows = session.execute(select(DBFolder).order_by(*_FOLDER_ORDER)).scalars().all()
            return [self._db_folder_to_model(row) for row in rows]

    # Bulk

    def bulk_load(self, folders: Sequence[Folder], notes: Sequence[Note]) -> None:
        with self._lock:
            with self._session("bulk_load") as session:
                try:
                    session.add_all([self._folder_to_db(f) for f in folders])
                    # Folders must exist before notes reference them
                    session.flush()
                    for note in notes:
                        db_note = DBNote(id=note.id)
                        self._apply_note(db_note, note)
                        session.add(db_note)
                    session.commit()
                except IntegrityError as e:
                    session.rollback()
                    raise NoteValidationError(
                        "Records conflict with existing data in the database",
                        code=ErrorCode.VALIDATION_FAILED,
                    ) from e
            self._mark_dirty()
        logger.info(
            f"Loaded {len(folders)} folders and {len(notes)} notes into {self.path}"
        )

    def count(self) -> Dict[str, int]:
        with self._session("count") as session:
            return {
                "notes": session.scalar(select(func.count(DBNote.id))) or 0,
                "folders": session.scalar(select(func.count(DBFolder.id))) or 0,
            }
