"""Reading and writing the single-file database image.

The durable store keeps its data in an in-memory SQLite database. These
helpers copy that database to and from a file with SQLite's online backup
API. Writes go to a temporary sibling file that is fsynced and then
atomically renamed over the target, so a failed write never damages the
last good image.
"""
import logging
import os
import sqlite3
from pathlib import Path

from notepocket.exceptions import DeserializationFailedError, WriteFailedError

logger = logging.getLogger(__name__)

# First 16 bytes of every SQLite 3 database file
SQLITE_HEADER = b"SQLite format 3\x00"


def temp_path_for(path: Path) -> Path:
    """Temporary file used while writing ``path``."""
    return path.with_name(f"{path.name}.tmp")


def looks_like_image(path: Path) -> bool:
    """Cheap header check before handing a file to SQLite."""
    try:
        with open(path, "rb") as f:
            return f.read(len(SQLITE_HEADER)) == SQLITE_HEADER
    except OSError:
        return False


def load_image(path: Path, target: sqlite3.Connection) -> None:
    """Copy the database image at ``path`` into the ``target`` connection.

    Raises:
        DeserializationFailedError: If the file is missing, unreadable or
            not an SQLite database.
    """
    path = Path(path)
    if not path.is_file():
        raise DeserializationFailedError(
            f"Database file not found: {path.name}", path=str(path)
        )
    if not looks_like_image(path):
        raise DeserializationFailedError(
            f"{path.name} is not a NotePocket database", path=str(path)
        )

    try:
        source = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
    except sqlite3.Error as e:
        raise DeserializationFailedError(
            f"Could not open {path.name}", path=str(path), original_error=e
        ) from e
    try:
        source.backup(target)
    except sqlite3.Error as e:
        raise DeserializationFailedError(
            f"Could not read {path.name}", path=str(path), original_error=e
        ) from e
    finally:
        source.close()
    logger.info(f"Loaded database image from {path}")


def write_image(source: sqlite3.Connection, path: Path) -> int:
    """Atomically write the database held by ``source`` to ``path``.

    Returns:
        Size of the written image in bytes.

    Raises:
        WriteFailedError: If any step fails. The previous file at ``path``
            is left untouched and the temporary file is removed.
    """
    path = Path(path)
    tmp = temp_path_for(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if tmp.exists():
            tmp.unlink()
        dest = sqlite3.connect(str(tmp))
        try:
            source.backup(dest)
        finally:
            dest.close()
        with open(tmp, "rb+") as f:
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except (OSError, sqlite3.Error) as e:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise WriteFailedError(
            f"Failed to save database image to {path.name}",
            path=str(path),
            original_error=e,
        ) from e

    size = path.stat().st_size
    logger.debug(f"Wrote database image {path} ({size} bytes)")
    return size
