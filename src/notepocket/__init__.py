"""
NotePocket - local persistence layer for a personal note manager.

Notes and folders live in a transient in-memory store by default and can be
upgraded on demand to a durable, file-backed SQLite image without data loss.
Legacy key-value data is migrated forward on startup.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notepocket")
except PackageNotFoundError:
    __version__ = "1.0.0"
