"""Artify storage layer."""

from artify.storage.base import StorageBackend
from artify.storage.sqlite_store import SQLiteStore

__all__ = ["SQLiteStore", "StorageBackend"]
