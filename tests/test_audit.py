"""
Tests for the audit logger.
"""

import pytest

from fortnight.audit import AuditLogger, create_correlation_id
from fortnight.models.audit import AuditEventBuilder, AuditEventType
from fortnight.services.storage import AuditStorageInterface, InMemoryAuditStorage, StorageError


class BrokenAuditStorage(AuditStorageInterface):
    async def append_event(self, event):
        raise StorageError("sheet unreachable")

    async def get_events_by_entity(self, entity_type, entity_id):
        return []

    async def get_recent_events(self, limit=100):
        return []


class TestAuditLogger:
    """Tests for AuditLogger."""

    @pytest.mark.asyncio
    async def test_event_is_persisted(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)

        assert await logger.log(AuditEventBuilder.vault_entry_missing()) is True

        events = await storage.get_recent_events()
        assert [e.event_type for e in events] == [AuditEventType.VAULT_ENTRY_MISSING]

    @pytest.mark.asyncio
    async def test_local_only_logging(self):
        assert await AuditLogger().log(AuditEventBuilder.vault_entry_missing()) is True

    @pytest.mark.asyncio
    async def test_storage_failure_is_not_raised(self):
        """A broken audit sink never breaks the flow being audited."""
        logger = AuditLogger(BrokenAuditStorage())

        assert await logger.log(AuditEventBuilder.vault_entry_missing()) is False

    @pytest.mark.asyncio
    async def test_helpers_share_correlation_id(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        correlation_id = create_correlation_id()

        await logger.log_vault_decryption_failed(user_id=None, correlation_id=correlation_id)
        await logger.log_stored_credentials_rejected(
            user_id="user-1",
            category="wrong_password",
            error_code="auth/wrong-password",
            correlation_id=correlation_id,
        )

        events = await storage.get_recent_events()
        assert len(events) == 2
        assert {e.correlation_id for e in events} == {correlation_id}

    @pytest.mark.asyncio
    async def test_events_by_entity(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)

        await logger.log_sign_in_succeeded("user-1", create_correlation_id())
        await logger.log_sign_in_succeeded("user-2", create_correlation_id())

        events = await storage.get_events_by_entity("user", "user-1")
        assert len(events) == 1
        assert events[0].entity_id == "user-1"
