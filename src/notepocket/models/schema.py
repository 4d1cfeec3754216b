"""Data models for the NotePocket storage layer."""

import datetime
import re
import uuid
from dataclasses import dataclass, field
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Inline image marker inside note content: ![alt](embedded:<imageId>)
EMBEDDED_IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(embedded:([^)\s]+)\)")

# Fallback display colour for folders created without one
DEFAULT_FOLDER_COLOR = "#6b7280"

# Attachment fields are populated together or not at all
ATTACHMENT_FIELDS = ("file_url", "file_name", "file_size", "file_mime_type")


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite stores datetimes without zone information, so values read back
    from the durable image are naive and are assumed to be UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate an opaque unique record identifier."""
    return str(uuid.uuid4())


class NoteType(str, Enum):
    """Kinds of notes."""

    TEXT = "text"  # Free text content
    IMAGE = "image"  # Image attachment, content is a caption
    FILE = "file"  # File attachment, content is a description


class BackendKind(str, Enum):
    """The two storage backends the adapter can delegate to."""

    VOLATILE = "volatile"
    DURABLE = "durable"


class AdapterState(str, Enum):
    """Lifecycle states of the storage adapter."""

    UNINITIALIZED = "uninitialized"
    VOLATILE_ACTIVE = "volatile_active"
    MIGRATING = "migrating"
    DURABLE_ACTIVE = "durable_active"


_CAMEL_MODEL_CONFIG: Dict[str, Any] = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "validate_assignment": True,
}


def normalize_tags(tags: List[str]) -> List[str]:
    """Strip tags, drop blanks and duplicates, keep first-seen order."""
    seen: Set[str] = set()
    result = []
    for tag in tags:
        name = tag.strip()
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


def _pick_fields(model: type, data: Dict[str, Any]) -> Dict[str, Any]:
    """Select the keys of ``data`` that name fields of ``model``.

    Both the field name and its camelCase alias are accepted.
    """
    known = {}
    for name, info in model.model_fields.items():
        if info.alias and info.alias in data:
            known[name] = data[info.alias]
        elif name in data:
            known[name] = data[name]
    return known


class EmbeddedImage(BaseModel):
    """An inline image stored with a note and referenced from its content."""

    id: str = Field(default_factory=generate_id, description="Image ID used in markers")
    url: str = Field(..., description="Binary reference (data URL or blob location)")
    alt: str = Field(default="", description="Alternative text")
    file_name: Optional[str] = Field(default=None, description="Original file name")
    file_size: int = Field(default=0, ge=0, description="Size in bytes")
    width: Optional[int] = Field(default=None, gt=0, description="Display width")
    height: Optional[int] = Field(default=None, gt=0, description="Display height")

    model_config = {**_CAMEL_MODEL_CONFIG, "extra": "ignore"}

    def marker(self) -> str:
        """Return the content marker that references this image."""
        return f"![{self.alt}](embedded:{self.id})"


class _NoteFields(BaseModel):
    """Fields a caller supplies for a note (everything except id/timestamps)."""

    title: str = Field(..., description="Title of the note")
    content: str = Field(default="", description="Text, or a caption/description")
    type: NoteType = Field(default=NoteType.TEXT, description="Kind of note")
    tags: List[str] = Field(default_factory=list, description="Tags for display and search")
    folder_id: Optional[str] = Field(default=None, description="Folder, or None if unfiled")
    is_favorite: bool = Field(default=False, description="Starred by the user")
    file_url: Optional[str] = Field(default=None, description="Attachment reference")
    file_name: Optional[str] = Field(default=None, description="Attachment file name")
    file_size: Optional[int] = Field(default=None, ge=0, description="Attachment size in bytes")
    file_mime_type: Optional[str] = Field(default=None, description="Attachment MIME type")
    embedded_images: List[EmbeddedImage] = Field(
        default_factory=list, description="Inline images in content order"
    )

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return normalize_tags(v)

    @field_validator("folder_id")
    @classmethod
    def validate_folder_id(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty folder reference as unfiled."""
        if v is None or not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_attachment(self) -> "_NoteFields":
        """Attachment fields must be set together or not at all."""
        present = [name for name in ATTACHMENT_FIELDS if getattr(self, name) is not None]
        if present and len(present) != len(ATTACHMENT_FIELDS):
            missing = sorted(set(ATTACHMENT_FIELDS) - set(present))
            raise ValueError(
                f"Attachment fields must be set together; missing {', '.join(missing)}"
            )
        return self

    def has_attachment(self) -> bool:
        return self.file_url is not None

    def referenced_image_ids(self) -> List[str]:
        """Image ids referenced by embedded markers in content, in order."""
        return [m.group(2) for m in EMBEDDED_IMAGE_PATTERN.finditer(self.content)]

    def unreferenced_images(self) -> List[EmbeddedImage]:
        """Embedded images that no marker in the content points at."""
        referenced = set(self.referenced_image_ids())
        return [img for img in self.embedded_images if img.id not in referenced]


class NoteCreate(_NoteFields):
    """Input for creating a note; the store mints id and timestamps."""

    model_config = {**_CAMEL_MODEL_CONFIG, "extra": "forbid"}

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "NoteCreate":
        """Build from a loose record, ignoring keys that are not note fields.

        Accepts both snake_case and camelCase keys, so exported notes
        (which also carry id and timestamps) can be replayed directly.
        """
        return cls.model_validate(_pick_fields(cls, data))


class NoteUpdate(BaseModel):
    """Partial note update; only explicitly set fields are applied.

    The note type cannot be changed after creation.
    """

    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    folder_id: Optional[str] = None
    is_favorite: Optional[bool] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    file_mime_type: Optional[str] = None
    embedded_images: Optional[List[EmbeddedImage]] = None

    model_config = {**_CAMEL_MODEL_CONFIG, "extra": "forbid"}

    def changes(self) -> Dict[str, Any]:
        """Return the fields the caller explicitly set."""
        return self.model_dump(exclude_unset=True)


class Note(_NoteFields):
    """A stored note."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {**_CAMEL_MODEL_CONFIG, "extra": "forbid"}

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)


class FolderCreate(BaseModel):
    """Input for creating a folder."""

    name: str = Field(..., description="Display name")
    color: str = Field(default=DEFAULT_FOLDER_COLOR, description="Display colour token")

    model_config = {**_CAMEL_MODEL_CONFIG, "extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the name is not empty."""
        if not v.strip():
            raise ValueError("Folder name cannot be empty")
        return v

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "FolderCreate":
        """Build from a loose record (name and color only)."""
        return FolderCreate.model_validate(_pick_fields(FolderCreate, data))


class FolderUpdate(BaseModel):
    """Partial folder update."""

    name: Optional[str] = None
    color: Optional[str] = None

    model_config = {**_CAMEL_MODEL_CONFIG, "extra": "forbid"}

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class Folder(FolderCreate):
    """A stored folder."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the folder")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the folder was created (UTC)"
    )

    model_config = {**_CAMEL_MODEL_CONFIG, "extra": "forbid"}

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)


class ExportPayload(BaseModel):
    """Bulk export/import document."""

    notes: List[Note] = Field(default_factory=list)
    folders: List[Folder] = Field(default_factory=list)
    exported_at: str = Field(default_factory=lambda: utc_now().isoformat())
    version: str = Field(default="1.0")

    model_config = _CAMEL_MODEL_CONFIG


@dataclass(frozen=True)
class StoreStatus:
    """Observable adapter state.

    Attributes:
        backend: Which backend is active, or None before initialization.
        initialized: Whether initialize() has completed.
        state: Current lifecycle state.
        durable_path: File backing the durable store, when active.
        persistence: Write policy, save state and flush/upgrade/migrate
            metrics of the active backend.
    """

    backend: Optional[BackendKind]
    initialized: bool
    state: AdapterState
    durable_path: Optional[str] = None
    persistence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend.value if self.backend else None,
            "initialized": self.initialized,
            "state": self.state.value,
            "durable_path": self.durable_path,
            "persistence": self.persistence,
        }


@dataclass
class UpgradeResult:
    """Outcome of StorageAdapter.upgrade().

    Attributes:
        status: "upgraded", "declined" (file selection cancelled), "failed",
            or "already_durable".
        error: The error that stopped the upgrade, if any.
        migrated_notes: Notes copied into the durable store.
        migrated_folders: Folders copied into the durable store.
    """

    status: Literal["upgraded", "declined", "failed", "already_durable"]
    error: Optional[Exception] = None
    migrated_notes: int = 0
    migrated_folders: int = 0

    @property
    def success(self) -> bool:
        return self.status in ("upgraded", "already_durable")


@dataclass
class ImportResult:
    """Counts from replaying a batch of folders and notes."""

    imported_notes: int = 0
    imported_folders: int = 0
    skipped_notes: int = 0
    skipped_folders: int = 0
    folder_id_map: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, int]:
        return {
            "imported_notes": self.imported_notes,
            "imported_folders": self.imported_folders,
            "skipped_notes": self.skipped_notes,
            "skipped_folders": self.skipped_folders,
        }


@dataclass
class MigrationResult:
    """Outcome of a legacy KV migration run."""

    success: bool
    notes_count: int = 0
    folders_count: int = 0
    skipped_notes: int = 0
    skipped_folders: int = 0
    legacy_cleared: bool = False
