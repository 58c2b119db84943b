# vhealth_core/storage/__init__.py

from .models import (
    AuditAction, AuditLogEntry, DocumentMetadata, IndexSnapshot, RecordStatus, SignatureRecord,
)
from .provider import StorageProvider
from .providers.memory_provider import InMemoryStorage
from .providers.sqlite_provider import SQLiteStorage
from vhealth_core.constants import DEFAULT_DB_PATH, DEFAULT_STORAGE_PROVIDER
import os


def load_storage_provider(config: dict | None = None) -> StorageProvider:
    """
    Factory resolver for selecting the archive storage backend.

        - sqlite (default, durable)
        - memory (tests, throwaway archives)
    """
    config = config or {}
    provider = config.get("provider") or os.getenv("VHEALTH_STORAGE_PROVIDER", DEFAULT_STORAGE_PROVIDER)

    if provider == "memory":
        return InMemoryStorage()

    if provider == "sqlite":
        db_path = config.get("sqlite_path") or os.getenv("VHEALTH_DB_PATH", DEFAULT_DB_PATH)
        return SQLiteStorage(db_path)

    raise ValueError(f"Unknown storage provider: {provider}")


__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "DocumentMetadata",
    "IndexSnapshot",
    "RecordStatus",
    "SignatureRecord",
    "StorageProvider",
    "InMemoryStorage",
    "SQLiteStorage",
    "load_storage_provider",
]
