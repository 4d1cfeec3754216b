"""Capability probing and database file selection for the durable upgrade."""

import logging
import os
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from notepocket.config import NotePocketConfig
from notepocket.exceptions import (
    FileSelectionCancelledError,
    InitializationUnsupportedError,
)
from notepocket.storage.durable_store import DurableStore

logger = logging.getLogger(__name__)

# Returns True when durable file storage can be used under the given directory
CapabilityProbe = Callable[[Path], bool]


def filesystem_capability_probe(directory: Path) -> bool:
    """Check that the nearest existing ancestor of ``directory`` is writable."""
    candidate = Path(directory).resolve()
    while not candidate.exists():
        if candidate.parent == candidate:
            return False
        candidate = candidate.parent
    return candidate.is_dir() and os.access(candidate, os.W_OK | os.X_OK)


class FileSelector(Protocol):
    """Chooses the database file for the durable store.

    Either method may return None to signal that the user declined.
    """

    def choose_existing(self) -> Optional[Path]:
        """Pick an existing database file to open."""
        ...

    def choose_new(self) -> Optional[Path]:
        """Pick a location for a new database file."""
        ...


class PathFileSelector:
    """Non-interactive selector bound to one path.

    Opens the file when it exists, otherwise creates it there.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def choose_existing(self) -> Optional[Path]:
        return self.path if self.path.exists() else None

    def choose_new(self) -> Optional[Path]:
        return self.path

    def __repr__(self) -> str:
        return f"PathFileSelector({str(self.path)!r})"


def open_durable_store(
    selector: FileSelector,
    probe: CapabilityProbe,
    cfg: NotePocketConfig,
) -> DurableStore:
    """Probe, select a file and open or create the durable store there.

    Raises:
        InitializationUnsupportedError: The probe reports no file access.
        FileSelectionCancelledError: Both selections were declined.
        DeserializationFailedError: The existing file is not a valid image.
        WriteFailedError: The new file could not be written.
    """
    probe_dir = cfg.get_database_path().parent
    if not probe(probe_dir):
        raise InitializationUnsupportedError(
            f"Durable file storage is not available under {probe_dir}"
        )

    existing = selector.choose_existing()
    if existing is not None:
        logger.info(f"Opening existing database {existing}")
        return DurableStore.open(existing, cfg.write_policy, cfg.autosave_interval)

    new_path = selector.choose_new()
    if new_path is None:
        raise FileSelectionCancelledError()
    logger.info(f"Creating new database {new_path}")
    return DurableStore.create(new_path, cfg.write_policy, cfg.autosave_interval)
