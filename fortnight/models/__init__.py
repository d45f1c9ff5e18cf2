"""
Data Models Package

This package contains all Pydantic models used by the biometric bridge.
All data flowing through the system must conform to these schemas.
"""

from fortnight.models.biometric import (
    ActivationFailure,
    ActivationResult,
    BiometricRegistration,
    CeremonyContext,
    CeremonyErrorKind,
    CeremonyState,
    DeviceCredentialRecord,
    PublicKeyMaterial,
    PublicKeySource,
    SignInFailure,
    SignInResult,
    StoredSecret,
    VaultEntry,
)
from fortnight.models.session import (
    AuthErrorCategory,
    AuthUser,
    Session,
)
from fortnight.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Biometric models
    "ActivationFailure",
    "ActivationResult",
    "BiometricRegistration",
    "CeremonyContext",
    "CeremonyErrorKind",
    "CeremonyState",
    "DeviceCredentialRecord",
    "PublicKeyMaterial",
    "PublicKeySource",
    "SignInFailure",
    "SignInResult",
    "StoredSecret",
    "VaultEntry",
    # Identity models
    "AuthErrorCategory",
    "AuthUser",
    "Session",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
