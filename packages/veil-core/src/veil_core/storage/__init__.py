"""Pluggable persistence for the Veil ledger."""
from __future__ import annotations

from ..config import VeilSettings
from .base import DEFAULT_LIST_LIMIT, StorageBackend
from .file_store import JsonFileStore
from .postgres_store import SCHEMA_SQL, PostgresStore


def create_store(settings: VeilSettings) -> StorageBackend:
    """Build the single backend selected by configuration.

    The returned store is not yet initialized; the application lifespan calls
    ``initialize()`` and treats a failure as fatal.
    """
    if settings.storage_backend == "postgres":
        return PostgresStore(settings.database_url)
    return JsonFileStore(settings.data_file)


__all__ = [
    "DEFAULT_LIST_LIMIT",
    "JsonFileStore",
    "PostgresStore",
    "SCHEMA_SQL",
    "StorageBackend",
    "create_store",
]
