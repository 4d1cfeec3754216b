"""Sample folders and notes for a first run."""

import logging
from typing import Any

from notepocket.models.schema import FolderCreate, NoteCreate

logger = logging.getLogger(__name__)

DEMO_FOLDERS = (
    ("work", "Work", "#1976d2"),
    ("personal", "Personal", "#388e3c"),
    ("ideas", "Ideas", "#f57c00"),
)

DEMO_NOTES = (
    {
        "title": "Welcome to NotePocket!",
        "content": (
            "# Welcome to NotePocket!\n\n"
            "Notes are kept on this computer. Until you pick a database file "
            "they live in memory only, so choose one to keep them.\n\n"
            "- Create text, image and file notes\n"
            "- Organize them with folders and tags\n"
            "- Star the ones you need often\n"
            "- Export everything to JSON at any time"
        ),
        "tags": ["welcome", "guide"],
        "is_favorite": True,
        "folder": None,
    },
    {
        "title": "Project Planning Notes",
        "content": (
            "# Goals\n\n"
            "- [x] Choose a local storage format\n"
            "- [ ] File-based persistence\n"
            "- [ ] Backup and restore"
        ),
        "tags": ["project", "planning", "database"],
        "folder": "work",
    },
    {
        "title": "Recipe Ideas",
        "content": "# This week\n\n- Mushroom pasta\n- Quinoa bowl\n- Chicken curry",
        "tags": ["recipes", "food", "planning"],
        "folder": "personal",
    },
    {
        "title": "App Feature Ideas",
        "content": "# Someday\n\n- Voice notes\n- Note templates\n- Version history",
        "tags": ["features", "development", "roadmap"],
        "is_favorite": True,
        "folder": "ideas",
    },
    {
        "title": "Quick Shopping List",
        "content": "- [x] Milk\n- [x] Eggs\n- [ ] Apples\n- [ ] Rice",
        "tags": ["shopping", "list"],
        "folder": "personal",
    },
    {
        "title": "Database Architecture",
        "content": (
            "# Tables\n\n"
            "- folders: id, name, color, created_at\n"
            "- notes: id, title, content, type, folder_id, is_favorite, "
            "attachment fields, timestamps\n"
            "- note_tags, embedded_images: ordered child rows"
        ),
        "tags": ["database", "architecture", "technical"],
        "folder": "work",
    },
)


def seed_demo_data(adapter: Any) -> bool:
    """Create the sample records when the store is empty.

    Returns:
        True if anything was created.
    """
    if adapter.get_all_notes() or adapter.get_all_folders():
        logger.debug("Store already has data, skipping demo data")
        return False

    folder_ids = {}
    for key, name, color in DEMO_FOLDERS:
        folder_ids[key] = adapter.create_folder(FolderCreate(name=name, color=color)).id

    for entry in DEMO_NOTES:
        fields = {k: v for k, v in entry.items() if k != "folder"}
        folder_key = entry.get("folder")
        adapter.create_note(
            NoteCreate(folder_id=folder_ids[folder_key] if folder_key else None, **fields)
        )

    logger.info(f"Seeded {len(DEMO_FOLDERS)} demo folders and {len(DEMO_NOTES)} demo notes")
    return True
