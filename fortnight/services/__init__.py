"""Services package."""

from fortnight.services.identity import (
    AuthError,
    IdentityProviderInterface,
    categorize_auth_error,
    synthesize_email,
)
from fortnight.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DocumentStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    JsonFileBackend,
    KeyValueBackend,
    MemoryBackend,
    SqliteBackend,
    StorageError,
    probe_backends,
)

__all__ = [
    # Identity
    "AuthError",
    "IdentityProviderInterface",
    "categorize_auth_error",
    "synthesize_email",
    # Storage
    "AuditStorageInterface",
    "ConnectionError",
    "DocumentStoreInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    "JsonFileBackend",
    "KeyValueBackend",
    "MemoryBackend",
    "SqliteBackend",
    "StorageError",
    "probe_backends",
]
