"""Bulk import and export of notes and folders as JSON documents."""

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional, Tuple, Union

from notepocket.exceptions import ErrorCode, ValidationError
from notepocket.models.schema import ExportPayload, ImportResult, utc_now

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"

_REQUIRED_NOTE_KEYS = ("title", "type")
_REQUIRED_FOLDER_KEYS = ("name",)


def _payload_error(message: str, field: Optional[str] = None, value: Any = None) -> ValidationError:
    return ValidationError(message, field=field, value=value, code=ErrorCode.INVALID_PAYLOAD)


def _check_entries(entries: Any, collection: str, required: Tuple[str, ...]) -> None:
    if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes, bytearray)):
        raise _payload_error(f"'{collection}' must be a list", field=collection)
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise _payload_error(
                f"{collection}[{index}] must be an object", field=f"{collection}[{index}]"
            )
        missing = [key for key in required if key not in entry]
        if missing:
            raise _payload_error(
                f"{collection}[{index}] is missing {', '.join(missing)}",
                field=f"{collection}[{index}]",
            )


def validate_import_records(notes: Any, folders: Any) -> None:
    """Structural check of import records, done before anything is written.

    Raises:
        ValidationError: If either collection is not a sequence of objects or an
            entry lacks its required keys.
    """
    _check_entries(folders, "folders", _REQUIRED_FOLDER_KEYS)
    _check_entries(notes, "notes", _REQUIRED_NOTE_KEYS)


def validate_import_payload(data: Any) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Validate a decoded import document and return ``(notes, folders)``."""
    if not isinstance(data, Mapping):
        raise _payload_error("Import payload must be a JSON object")
    for key in ("notes", "folders"):
        if key not in data:
            raise _payload_error(f"Import payload is missing '{key}'", field=key)
    validate_import_records(data["notes"], data["folders"])
    return list(data["notes"]), list(data["folders"])


def parse_import_data(text: str) -> Dict[str, Any]:
    """Parse and validate an import document.

    Missing ``exportedAt`` and ``version`` are filled in.

    Raises:
        ValidationError: If the text is not JSON or fails validation.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise _payload_error(f"Import file is not valid JSON: {e.msg}") from e
    notes, folders = validate_import_payload(data)
    return {
        "notes": notes,
        "folders": folders,
        "exportedAt": data.get("exportedAt") or utc_now().isoformat(),
        "version": data.get("version") or EXPORT_VERSION,
    }


def import_payload(adapter: Any, data: Union[str, bytes, Mapping]) -> ImportResult:
    """Import a JSON document (text or already decoded) into ``adapter``."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    if isinstance(data, str):
        parsed = parse_import_data(data)
        notes, folders = parsed["notes"], parsed["folders"]
    else:
        notes, folders = validate_import_payload(data)
    return adapter.import_data(notes, folders)


def export_data(adapter: Any) -> ExportPayload:
    """Snapshot every note and folder held by ``adapter``."""
    payload = ExportPayload(
        notes=adapter.get_all_notes(),
        folders=adapter.get_all_folders(),
        version=getattr(adapter.config, "export_version", EXPORT_VERSION),
    )
    logger.info(f"Exported {len(payload.notes)} notes and {len(payload.folders)} folders")
    return payload


def dump_export(payload: ExportPayload, indent: int = 2) -> str:
    """Serialize an export payload to camelCase JSON."""
    return payload.model_dump_json(by_alias=True, indent=indent)
