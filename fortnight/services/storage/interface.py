"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for every storage concern.
This allows us to:
1. Swap the hosted document store (Google Sheets, Firestore, ...) freely
2. Use in-memory storage for testing
3. Pick local key-value backends once, at startup, by probing the device
4. Keep the biometric bridge decoupled from storage implementation

The interfaces are intentionally small. The bridge only ever needs to read
and merge one user document, and to get/set/delete a few local keys.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from fortnight.models.audit import AuditEvent


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the hosted document store.

    Used only to mirror the public biometric registration record per user.
    """

    @abstractmethod
    async def get_document(
        self,
        collection: str,
        doc_id: str,
    ) -> Optional[dict[str, Any]]:
        """
        Retrieve a document.

        Args:
            collection: Collection name (e.g., 'users')
            doc_id: Document id

        Returns:
            The document fields if found, None otherwise

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def set_document(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        merge: bool = True,
    ) -> bool:
        """
        Write a document.

        Args:
            collection: Collection name
            doc_id: Document id
            fields: Fields to write
            merge: Update only the given fields instead of replacing the document

        Returns:
            True if written successfully

        Raises:
            StorageError: If the write fails
        """
        pass


class KeyValueBackend(ABC):
    """
    Abstract local key-value backend.

    Two variants exist on a device: an indexed database and a flat store.
    Values are JSON-serializable.
    """

    name: str = "key_value"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if the key is absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a key. Deleting a missing key is not an error."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
