"""Replaying loose folder and note records through the storage adapter.

Shared by the legacy migration and the bulk import. Records get fresh ids;
folder references in notes are remapped to the new folder ids and
references that cannot be mapped leave the note unfiled.

A ``WriteFailedError`` that carries a stored record means the record is in
the store and only the image write failed, so it counts as imported. Any
other ``StorageError`` means nothing was stored.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError

from notepocket.exceptions import StorageError, ValidationError, WriteFailedError
from notepocket.models.schema import FolderCreate, ImportResult, NoteCreate
from notepocket.storage.base import validation_error_from

logger = logging.getLogger(__name__)


class ReplayProgress:
    """Records handled so far, so an interrupted replay can resume.

    Pass the same instance to repeated ``replay_records`` calls over the same
    input: records already stored or rejected are not replayed again and the
    counts in ``result`` accumulate.
    """

    def __init__(self) -> None:
        self.result = ImportResult()
        self.done: Set[str] = set()


def _record_label(record: Mapping[str, Any], key: str) -> str:
    return repr(record.get(key, "<untitled>"))[:60]


def _record_key(kind: str, index: int, record: Mapping[str, Any]) -> str:
    return f"{kind}:{index}:{record.get('id')}"


def _remap_folder(record: Mapping[str, Any], folder_id_map: Dict[str, str]) -> Dict[str, Any]:
    data = dict(record)
    old_id: Optional[Any] = data.pop("folder_id", None)
    old_id = data.get("folderId", old_id)
    data["folderId"] = folder_id_map.get(str(old_id)) if old_id else None
    if old_id and data["folderId"] is None:
        logger.debug(f"Folder reference {old_id!r} has no mapping, note will be unfiled")
    return data


def _replay_one(
    create: Callable[[Any], Any],
    build: Callable[[Any], Any],
    record: Mapping[str, Any],
    kind: str,
    label: str,
    operation: str,
    stop_on_storage_error: bool,
) -> Tuple[Optional[Any], Optional[WriteFailedError]]:
    """Create one record.

    Returns the stored model (``None`` if the record was skipped) and the
    write error to re-raise once the record has been accounted for.
    """
    try:
        return create(build(record)), None
    except PydanticValidationError as e:
        message = validation_error_from(e, kind.capitalize()).message
        logger.warning(f"{operation}: skipping {kind} {label}: {message}")
    except ValidationError as e:
        logger.warning(f"{operation}: skipping {kind} {label}: {e.message}")
    except WriteFailedError as e:
        if not e.stored:
            if stop_on_storage_error:
                raise
            logger.error(f"{operation}: storing {kind} {label} failed: {e.message}")
            return None, None
        logger.error(f"{operation}: {kind} {label} stored but not yet on disk: {e.message}")
        return e.record, (e if stop_on_storage_error else None)
    except StorageError as e:
        if stop_on_storage_error:
            raise
        logger.error(f"{operation}: storing {kind} {label} failed: {e.message}")
    return None, None


def replay_records(
    target: Any,
    folders: Iterable[Mapping[str, Any]],
    notes: Iterable[Mapping[str, Any]],
    operation: str = "import",
    stop_on_storage_error: bool = False,
    progress: Optional[ReplayProgress] = None,
) -> ImportResult:
    """Create ``folders`` then ``notes`` on ``target``.

    Args:
        target: Anything with ``create_folder`` and ``create_note``,
            normally a ``StorageAdapter``.
        folders: Folder records (camelCase or snake_case keys).
        notes: Note records; ``folderId`` refers to ids in ``folders``.
        operation: Label used in log messages.
        stop_on_storage_error: Re-raise ``StorageError`` instead of
            skipping the record. A record that was stored before its image
            write failed is counted and remembered in ``progress`` first.
        progress: Progress of earlier calls over the same records.

    Returns:
        Counts of imported and skipped records plus the folder id mapping.
    """
    if progress is None:
        progress = ReplayProgress()
    result = progress.result

    for index, record in enumerate(folders):
        key = _record_key("folder", index, record)
        if key in progress.done:
            continue
        folder, write_error = _replay_one(
            target.create_folder,
            FolderCreate.from_record,
            record,
            "folder",
            _record_label(record, "name"),
            operation,
            stop_on_storage_error,
        )
        progress.done.add(key)
        if folder is None:
            result.skipped_folders += 1
            continue
        old_id = record.get("id")
        if old_id:
            result.folder_id_map[str(old_id)] = folder.id
        result.imported_folders += 1
        if write_error is not None:
            raise write_error

    for index, record in enumerate(notes):
        key = _record_key("note", index, record)
        if key in progress.done:
            continue
        data = _remap_folder(record, result.folder_id_map)
        note, write_error = _replay_one(
            target.create_note,
            NoteCreate.from_record,
            data,
            "note",
            _record_label(record, "title"),
            operation,
            stop_on_storage_error,
        )
        progress.done.add(key)
        if note is None:
            result.skipped_notes += 1
            continue
        logger.debug(f"{operation}: created note {note.id}")
        result.imported_notes += 1
        if write_error is not None:
            raise write_error

    logger.info(
        f"{operation}: {result.imported_folders} folders, {result.imported_notes} notes "
        f"({result.skipped_folders + result.skipped_notes} skipped)"
    )
    return result
