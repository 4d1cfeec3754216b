"""Tests for the data models in the NotePocket storage layer."""
import datetime

import pytest
from pydantic import ValidationError

from notepocket.models.schema import (
    DEFAULT_FOLDER_COLOR,
    EmbeddedImage,
    ExportPayload,
    Folder,
    FolderCreate,
    Note,
    NoteCreate,
    NoteType,
    NoteUpdate,
    ensure_timezone_aware,
    normalize_tags,
)


class TestNoteModel:
    """Tests for the Note and NoteCreate models."""

    def test_note_create_defaults(self):
        """Test that optional fields get their defaults."""
        note = NoteCreate(title="Test Note")
        assert note.content == ""
        assert note.type == NoteType.TEXT
        assert note.tags == []
        assert note.folder_id is None
        assert note.is_favorite is False
        assert note.embedded_images == []
        assert not note.has_attachment()

    def test_title_required(self):
        """Test that blank titles are rejected."""
        with pytest.raises(ValidationError):
            NoteCreate(title="")
        with pytest.raises(ValidationError):
            NoteCreate(title="   ")

    def test_invalid_type_rejected(self):
        with pytest.raises(ValidationError):
            NoteCreate(title="x", type="video")

    def test_tags_are_normalized(self):
        """Test that blank and duplicate tags are dropped in first-seen order."""
        note = NoteCreate(title="x", tags=[" work ", "ideas", "", "work", "Work"])
        assert note.tags == ["work", "ideas", "Work"]

    def test_blank_folder_id_means_unfiled(self):
        assert NoteCreate(title="x", folder_id="").folder_id is None

    def test_attachment_fields_all_or_nothing(self):
        """Test that a partial attachment is rejected."""
        with pytest.raises(ValidationError):
            NoteCreate(title="x", type="file", file_url="blob:1")

        note = NoteCreate(
            title="Report",
            type="file",
            file_url="blob:1",
            file_name="report.pdf",
            file_size=10,
            file_mime_type="application/pdf",
        )
        assert note.has_attachment()

    def test_negative_file_size_rejected(self):
        with pytest.raises(ValidationError):
            NoteCreate(
                title="x",
                file_url="blob:1",
                file_name="a",
                file_size=-1,
                file_mime_type="text/plain",
            )

    def test_camel_case_aliases(self):
        """Test that camelCase input is accepted and produced."""
        note = NoteCreate.model_validate(
            {"title": "x", "folderId": "f1", "isFavorite": True}
        )
        assert note.folder_id == "f1"
        assert note.is_favorite is True
        dumped = note.model_dump(by_alias=True)
        assert "folderId" in dumped
        assert "isFavorite" in dumped

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            NoteCreate(title="x", colour="red")

    def test_from_record_ignores_foreign_keys(self):
        """Test that exported records with id and timestamps can be replayed."""
        note = NoteCreate.from_record(
            {
                "id": "old-id",
                "title": "Exported",
                "type": "text",
                "folderId": "f1",
                "createdAt": "2024-01-01T00:00:00Z",
            }
        )
        assert note.title == "Exported"
        assert note.folder_id == "f1"

    def test_note_timestamps_are_timezone_aware(self):
        naive = datetime.datetime(2024, 1, 1, 12, 0)
        note = Note(title="x", created_at=naive, updated_at=naive)
        assert note.created_at.tzinfo is not None
        assert note.updated_at == naive.replace(tzinfo=datetime.timezone.utc)

    def test_embedded_image_markers(self):
        """Test the relation between content markers and embedded images."""
        used = EmbeddedImage(id="img1", url="data:image/png;base64,AA", alt="chart")
        unused = EmbeddedImage(id="img2", url="data:image/png;base64,BB")
        note = NoteCreate(
            title="Charts",
            content=f"Before {used.marker()} after",
            embedded_images=[used, unused],
        )
        assert used.marker() == "![chart](embedded:img1)"
        assert note.referenced_image_ids() == ["img1"]
        assert note.unreferenced_images() == [unused]

    def test_embedded_image_dimensions_positive(self):
        with pytest.raises(ValidationError):
            EmbeddedImage(url="x", width=0)


class TestNoteUpdate:
    def test_changes_only_include_set_fields(self):
        update = NoteUpdate(title="New")
        assert update.changes() == {"title": "New"}

    def test_explicit_none_is_kept(self):
        """Test that folder_id=None is distinguishable from not set."""
        assert NoteUpdate(folder_id=None).changes() == {"folder_id": None}
        assert NoteUpdate().changes() == {}

    def test_type_cannot_be_updated(self):
        with pytest.raises(ValidationError):
            NoteUpdate(type="file")


class TestFolderModel:
    def test_folder_defaults(self):
        folder = Folder(name="Work")
        assert folder.color == DEFAULT_FOLDER_COLOR
        assert folder.id
        assert folder.created_at.tzinfo is not None

    def test_folder_name_required(self):
        with pytest.raises(ValidationError):
            FolderCreate(name=" ")

    def test_from_record(self):
        folder = FolderCreate.from_record({"id": "f1", "name": "Work", "color": "#fff"})
        assert folder.name == "Work"
        assert folder.color == "#fff"


class TestHelpers:
    def test_normalize_tags(self):
        assert normalize_tags(["a", "a", " b", ""]) == ["a", "b"]

    def test_ensure_timezone_aware(self):
        aware = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
        assert ensure_timezone_aware(aware) is aware
        assert ensure_timezone_aware(None).tzinfo is not None

    def test_export_payload_serializes_camel_case(self):
        payload = ExportPayload(notes=[Note(title="x")], folders=[])
        data = payload.model_dump(mode="json", by_alias=True)
        assert data["version"] == "1.0"
        assert "exportedAt" in data
        assert "createdAt" in data["notes"][0]
