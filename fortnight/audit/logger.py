"""
Audit Logger

Every step of biometric registration, sign-in and unregistration is logged.
This provides:
1. Traceability of who enabled biometrics and when
2. A loud trail when stored credentials stop decrypting
3. Debugging capability when a platform misbehaves

The audit logger:
- Is async to not block the ceremonies
- Gracefully handles failures (a broken audit sink never fails a sign-in)
- Supports correlation IDs to trace one sign-in attempt end to end
- Never receives secrets: events carry ids and categories only
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from fortnight.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from fortnight.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when configured (Google Sheets in production)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("fortnight.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_sign_in_succeeded(
        self,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.biometric_sign_in_succeeded(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_vault_entry_missing(self, correlation_id: UUID) -> None:
        """Biometric check passed but the vault was empty."""
        await self.log(AuditEventBuilder.vault_entry_missing(
            correlation_id=correlation_id,
        ))

    async def log_vault_decryption_failed(
        self,
        user_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Stored credentials did not authenticate. Logged at error level."""
        await self.log(AuditEventBuilder.vault_decryption_failed(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_stored_credentials_rejected(
        self,
        user_id: Optional[str],
        category: str,
        error_code: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.stored_credentials_rejected(
            user_id=user_id,
            category=category,
            error_code=error_code,
            correlation_id=correlation_id,
        ))

    async def log_password_confirmation_failed(
        self,
        user_id: Optional[str],
        category: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.password_confirmation_failed(
            user_id=user_id,
            category=category,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a biometric sign-in).
    Pass it through all subsequent operations.
    """
    return uuid4()
