"""
Audit Models for Biometric Sign-in

Every significant action of the biometric bridge is logged for audit purposes.
This provides:
1. Traceability of who enabled biometrics, on which device, and when
2. A way to tell hostile tampering apart from benign drift
3. Debugging information when a platform misbehaves

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Secrets (passwords, decrypted or encrypted vault contents) never appear here.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each step of registration, sign-in and unregistration has its own type.
    """
    # Ceremonies
    BIOMETRIC_REGISTERED = "biometric_registered"
    BIOMETRIC_REGISTRATION_FAILED = "biometric_registration_failed"
    BIOMETRIC_UNREGISTERED = "biometric_unregistered"
    BIOMETRIC_AUTHENTICATED = "biometric_authenticated"
    BIOMETRIC_DENIED = "biometric_denied"

    # Vault
    VAULT_SAVED = "vault_saved"
    VAULT_SAVE_FAILED = "vault_save_failed"
    VAULT_DECRYPTION_FAILED = "vault_decryption_failed"
    VAULT_ENTRY_MISSING = "vault_entry_missing"
    VAULT_SLOT_OVERWRITTEN = "vault_slot_overwritten"

    # Guard and bootstrap
    PASSWORD_CONFIRMATION_FAILED = "password_confirmation_failed"
    BIOMETRIC_SIGN_IN_SUCCEEDED = "biometric_sign_in_succeeded"
    STORED_CREDENTIALS_REJECTED = "stored_credentials_rejected"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'user', 'credential', 'vault')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Opaque id of the entity (identity-provider ids are not UUIDs)"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one sign-in attempt)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_code or "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.biometric_registered(user_id, credential_id, ...)
        event = AuditEventBuilder.vault_decryption_failed(user_id, correlation_id)
    """

    @staticmethod
    def biometric_registered(
        user_id: str,
        credential_id: str,
        public_key_source: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BIOMETRIC_REGISTERED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Biometric credential registered on this device",
            details={
                "credential_id": credential_id,
                "public_key_source": public_key_source,
            },
            is_user_action=True,
        )

    @staticmethod
    def biometric_registration_failed(
        user_id: Optional[str],
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BIOMETRIC_REGISTRATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Biometric registration failed: {error_kind}",
            error_code=error_kind,
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def biometric_unregistered(
        user_id: str,
        failed_steps: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BIOMETRIC_UNREGISTERED,
            severity=AuditSeverity.WARNING if failed_steps else AuditSeverity.INFO,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Biometric sign-in disabled",
            details={
                "failed_steps": failed_steps,
            },
            is_user_action=True,
        )

    @staticmethod
    def biometric_authenticated(
        credential_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BIOMETRIC_AUTHENTICATED,
            entity_type="credential",
            entity_id=credential_id,
            correlation_id=correlation_id,
            description="Local biometric check passed",
            is_user_action=True,
        )

    @staticmethod
    def biometric_denied(
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BIOMETRIC_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="credential",
            correlation_id=correlation_id,
            description=f"Local biometric check failed: {error_kind}",
            error_code=error_kind,
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def vault_saved(
        user_id: str,
        backends: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_SAVED,
            entity_type="vault",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Encrypted credentials stored in {len(backends)} backend(s)",
            details={
                "backends": backends,
            },
        )

    @staticmethod
    def vault_save_failed(
        user_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_SAVE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="vault",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Biometric registered but encrypted credentials were not stored",
            error_message=error_message,
        )

    @staticmethod
    def vault_decryption_failed(
        user_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        # Possible tampering: keep it loud.
        return AuditEvent(
            event_type=AuditEventType.VAULT_DECRYPTION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="vault",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Stored credentials failed authentication (tampered, corrupted or wrong key)",
        )

    @staticmethod
    def vault_entry_missing(
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_ENTRY_MISSING,
            severity=AuditSeverity.WARNING,
            entity_type="vault",
            correlation_id=correlation_id,
            description="Biometric check passed but no stored credentials were found",
        )

    @staticmethod
    def vault_slot_overwritten(
        previous_user_id: str,
        user_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_SLOT_OVERWRITTEN,
            severity=AuditSeverity.WARNING,
            entity_type="vault",
            entity_id=user_id,
            description="Device vault slot taken over by another account",
            details={
                "previous_user_id": previous_user_id,
            },
        )

    @staticmethod
    def password_confirmation_failed(
        user_id: Optional[str],
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSWORD_CONFIRMATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Password confirmation before biometric activation failed: {category}",
            error_code=category,
            is_user_action=True,
        )

    @staticmethod
    def biometric_sign_in_succeeded(
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BIOMETRIC_SIGN_IN_SUCCEEDED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Signed in with biometrics",
            is_user_action=True,
        )

    @staticmethod
    def stored_credentials_rejected(
        user_id: Optional[str],
        category: str,
        error_code: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORED_CREDENTIALS_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Identity provider rejected stored credentials: {category}",
            error_code=error_code,
            details={
                "category": category,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
