"""
In-Memory Storage Implementations

Process-local implementations of the storage interfaces. Used for tests,
for local development without a hosted document store, and as the last
resort key-value backend when nothing on disk is writable.
"""

import copy
from typing import Any, Optional

from fortnight.models.audit import AuditEvent
from fortnight.services.storage.interface import (
    AuditStorageInterface,
    DocumentStoreInterface,
    KeyValueBackend,
)


class InMemoryDocumentStore(DocumentStoreInterface):
    """Document store backed by nested dicts."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    async def get_document(
        self,
        collection: str,
        doc_id: str,
    ) -> Optional[dict[str, Any]]:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def set_document(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        merge: bool = True,
    ) -> bool:
        documents = self._collections.setdefault(collection, {})
        if merge and doc_id in documents:
            documents[doc_id].update(copy.deepcopy(fields))
        else:
            documents[doc_id] = copy.deepcopy(fields)
        return True


class MemoryBackend(KeyValueBackend):
    """Key-value backend that forgets everything when the process exits."""

    name = "memory"

    def __init__(self):
        self._values: dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._values.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
