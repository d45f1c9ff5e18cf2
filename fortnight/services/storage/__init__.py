"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage:
the hosted document store (Google Sheets or in-memory), the local
key-value backends used by the vault, and audit log storage.
"""

from fortnight.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DocumentStoreInterface,
    KeyValueBackend,
    StorageError,
)
from fortnight.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    MemoryBackend,
)
from fortnight.services.storage.local import (
    JsonFileBackend,
    SqliteBackend,
    probe_backends,
)
from fortnight.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStoreInterface",
    "KeyValueBackend",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # In-memory implementations
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    "MemoryBackend",
    # Local backends
    "JsonFileBackend",
    "SqliteBackend",
    "probe_backends",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
]
