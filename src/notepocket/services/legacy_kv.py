"""Legacy key-value stores and normalization of their loosely typed records.

Older releases kept two collections, ``"notes"`` and ``"folders"``, in a flat
key-value store as lists of camelCase objects. Field names drifted over
time (``imageUrl`` for the attachment reference, ``fileType`` for its MIME
type, tags sometimes saved as a comma separated string).
"""

import copy
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from notepocket.exceptions import ErrorCode, StorageError, ValidationError

logger = logging.getLogger(__name__)

NOTES_KEY = "notes"
FOLDERS_KEY = "folders"

DEFAULT_ATTACHMENT_NAME = "attachment"
DEFAULT_MIME_TYPE = "application/octet-stream"


class LegacyKVStore(Protocol):
    """Minimal interface the migration needs from a legacy store."""

    def get(self, key: str) -> Any:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryKVStore:
    """Dictionary-backed legacy store, mostly for tests and embedding."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(dict(data or {}))

    def get(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class JsonFileKVStore:
    """Legacy store kept as one JSON object in a file.

    The file is re-read on every ``get`` so presence is never cached.
    Deleting the last key removes the file.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(
                f"Could not read legacy store {self.path.name}",
                operation="read_legacy",
                path=str(self.path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e
        if not isinstance(data, dict):
            raise StorageError(
                f"Legacy store {self.path.name} does not hold a JSON object",
                operation="read_legacy",
                path=str(self.path),
                code=ErrorCode.STORAGE_READ_FAILED,
            )
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        try:
            if not data:
                self.path.unlink()
                return
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(
                f"Could not update legacy store {self.path.name}",
                operation="write_legacy",
                path=str(self.path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def get(self, key: str) -> Any:
        return self._read().get(key)

    def delete(self, key: str) -> None:
        data = self._read()
        if key not in data:
            return
        del data[key]
        self._write(data)
        logger.debug(f"Removed '{key}' from legacy store {self.path}")


def _normalize_tags(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(tag) for tag in value if tag is not None]
    raise ValidationError("tags must be a list or a string", field="tags", value=value)


def normalize_legacy_note(record: Any) -> Dict[str, Any]:
    """Bring a legacy note record to the current camelCase field set.

    Raises:
        ValidationError: If the record is not an object or has unusable tags.
    """
    if not isinstance(record, Mapping):
        raise ValidationError(
            "Legacy note is not an object", value=record, code=ErrorCode.INVALID_PAYLOAD
        )
    note = dict(record)

    image_url = note.pop("imageUrl", None)
    if not note.get("fileUrl") and image_url:
        note["fileUrl"] = image_url
    file_type = note.pop("fileType", None)
    if not note.get("fileMimeType") and file_type:
        note["fileMimeType"] = file_type

    if note.get("content") is None:
        note["content"] = ""
    note["tags"] = _normalize_tags(note.get("tags"))
    note["isFavorite"] = bool(note.get("isFavorite", False))
    if note.get("embeddedImages") is None:
        note["embeddedImages"] = []

    if note.get("fileUrl"):
        if not note.get("fileName"):
            note["fileName"] = DEFAULT_ATTACHMENT_NAME
        if note.get("fileSize") is None:
            note["fileSize"] = 0
        if not note.get("fileMimeType"):
            note["fileMimeType"] = DEFAULT_MIME_TYPE
    else:
        for key in ("fileUrl", "fileName", "fileSize", "fileMimeType"):
            note.pop(key, None)
    return note


def normalize_legacy_folder(record: Any) -> Dict[str, Any]:
    if not isinstance(record, Mapping):
        raise ValidationError(
            "Legacy folder is not an object", value=record, code=ErrorCode.INVALID_PAYLOAD
        )
    folder = dict(record)
    if not folder.get("color"):
        folder.pop("color", None)
    return folder
