"""Configuration module for the NotePocket storage layer."""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notepocket import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default data directory
_USER_ENV = Path.home() / ".notepocket" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Upper bound on the autosave period; keeps the documented loss window sane
_MAX_AUTOSAVE_INTERVAL = 3600.0


class WritePolicy(str, Enum):
    """How the durable store keeps its image file up to date."""

    WRITE_THROUGH = "write_through"  # Flush after every mutation
    PERIODIC = "periodic"  # Flush on a timer, on force_save and on close


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NotePocketConfig(BaseModel):
    """Configuration for the NotePocket storage layer."""

    # Base directory that relative paths are resolved against
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEPOCKET_BASE_DIR", "."))
    )
    # Default location of the durable database image
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEPOCKET_DATABASE_PATH", "data/notepocket.db")
        )
    )
    # Legacy key-value JSON file to migrate from (optional)
    legacy_kv_path: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTEPOCKET_LEGACY_KV_PATH"))
            if os.getenv("NOTEPOCKET_LEGACY_KV_PATH")
            else None
        )
    )
    # Durable write policy
    write_policy: WritePolicy = Field(
        default_factory=lambda: WritePolicy(
            os.getenv("NOTEPOCKET_WRITE_POLICY", WritePolicy.WRITE_THROUGH.value)
        )
    )
    # Seconds between periodic flushes (only used with WritePolicy.PERIODIC)
    autosave_interval: float = Field(
        default_factory=lambda: float(
            os.getenv("NOTEPOCKET_AUTOSAVE_INTERVAL", "30")
        )
    )
    # Populate an empty volatile store with sample folders and notes
    seed_demo_data: bool = Field(
        default_factory=lambda: _env_bool("NOTEPOCKET_SEED_DEMO_DATA", "false")
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTEPOCKET_LOG_LEVEL", "INFO")
    )
    # Export format version written into bulk export payloads
    export_version: str = Field(default="1.0")
    app_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_autosave(self) -> "NotePocketConfig":
        """Validate the autosave period."""
        if self.autosave_interval <= 0:
            raise ValueError("autosave_interval must be > 0")
        if self.autosave_interval > _MAX_AUTOSAVE_INTERVAL:
            logger.warning(
                "autosave_interval=%.1fs is unusually long; up to that many "
                "seconds of edits can be lost if the process dies.",
                self.autosave_interval,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_database_path(self) -> Path:
        """Get the absolute path of the default durable database image."""
        return self.get_absolute_path(self.database_path)

    def get_legacy_kv_path(self) -> Optional[Path]:
        """Get the absolute path to the legacy KV file, or None if unset."""
        if self.legacy_kv_path is None:
            return None
        return self.get_absolute_path(self.legacy_kv_path)


# Create a global config instance
config = NotePocketConfig()
