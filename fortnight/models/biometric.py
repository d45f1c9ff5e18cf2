"""
Biometric Sign-in Models

These models define the data flowing through the biometric bridge:
1. The public registration record mirrored to the document store
2. The private vault entry kept on the device
3. The ephemeral ceremony context
4. The outcomes handed back to the sign-in and profile surfaces

DESIGN DECISION: Public and private halves never share a model.
A BiometricRegistration can be shown or synced anywhere; a VaultEntry
only ever lives in local storage, and only in encrypted form.
"""

import base64
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from webauthn.helpers import base64url_to_bytes

from fortnight.models.session import AuthErrorCategory, Session


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class CeremonyState(str, Enum):
    """
    Lifecycle of a single WebAuthn ceremony.

    Idle -> Requesting -> one terminal state. Not persisted.
    """
    IDLE = "idle"
    REQUESTING = "requesting"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"
    ABORTED = "aborted"
    STATE_CONFLICT = "state_conflict"
    SECURITY_VIOLATION = "security_violation"
    FAILED = "failed"


class CeremonyErrorKind(str, Enum):
    """Why a ceremony did not succeed."""
    PERMISSION_DENIED = "permission_denied"
    UNSUPPORTED = "unsupported"
    CREDENTIAL_CONFLICT = "credential_conflict"
    USER_CANCELLED = "user_cancelled"
    SECURITY_CONTEXT_INVALID = "security_context_invalid"
    NOT_AUTHENTICATED = "not_authenticated"
    NO_DEVICE_CREDENTIAL = "no_device_credential"
    CEREMONY_IN_PROGRESS = "ceremony_in_progress"
    UNKNOWN = "unknown"


class PublicKeySource(str, Enum):
    """
    Where the mirrored public key material came from.

    SUBSTITUTED means the platform did not expose the key and the
    credential id was encoded in its place.
    """
    EXTRACTED = "extracted"
    SUBSTITUTED = "substituted"


class SignInFailure(str, Enum):
    """Failure categories of the biometric sign-in bootstrap."""
    BIOMETRIC_DENIED = "biometric_denied"
    NO_STORED_CREDENTIALS = "no_stored_credentials"
    DECRYPTION_FAILED = "decryption_failed"
    STORED_CREDENTIALS_REJECTED = "stored_credentials_rejected"
    SIGN_IN_FAILED = "sign_in_failed"
    MISSING_FIELDS = "missing_fields"


class ActivationFailure(str, Enum):
    """Failure categories of password-confirmed biometric activation."""
    EMPTY_PASSWORD = "empty_password"
    NOT_AUTHENTICATED = "not_authenticated"
    WRONG_PASSWORD = "wrong_password"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    REQUIRES_RECENT_LOGIN = "requires_recent_login"
    NETWORK_FAILURE = "network_failure"
    REGISTRATION_FAILED = "registration_failed"
    UNKNOWN = "unknown"


# =============================================================================
# PUBLIC RECORD
# =============================================================================

class PublicKeyMaterial(BaseModel):
    """Tagged public key result of a registration ceremony."""
    model_config = ConfigDict(frozen=True)

    source: PublicKeySource
    data: bytes

    @classmethod
    def extracted(cls, key_bytes: bytes) -> "PublicKeyMaterial":
        return cls(source=PublicKeySource.EXTRACTED, data=key_bytes)

    @classmethod
    def substituted(cls, credential_id: str) -> "PublicKeyMaterial":
        return cls(
            source=PublicKeySource.SUBSTITUTED,
            data=credential_id.encode("utf-8"),
        )

    @property
    def is_degraded(self) -> bool:
        return self.source == PublicKeySource.SUBSTITUTED

    @property
    def encoded(self) -> str:
        """Standard base64, as stored in the document store."""
        return base64.b64encode(self.data).decode("ascii")


class BiometricRegistration(BaseModel):
    """
    Public biometric registration of a user, mirrored to the document store.

    Field aliases are the document store field names. The record is
    advisory: it drives UI state, never a ceremony.
    """
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(
        ...,
        min_length=1,
        description="Identity-provider subject id (document id)"
    )
    enabled: bool = Field(
        default=False,
        alias="biometricEnabled",
    )
    credential_id: Optional[str] = Field(
        default=None,
        alias="biometricCredentialId",
        description="base64url platform credential id"
    )
    public_key_material: Optional[str] = Field(
        default=None,
        alias="biometricPublicKey",
        description="base64 public key (or substituted credential id)"
    )
    public_key_source: Optional[PublicKeySource] = Field(
        default=None,
        alias="biometricPublicKeySource",
    )
    registered_at: Optional[datetime] = Field(
        default=None,
        alias="biometricRegisteredAt",
    )
    email: Optional[str] = None
    device: Optional[dict[str, str]] = Field(
        default=None,
        alias="biometricDevice",
        description="User agent and platform, for debugging only"
    )

    @model_validator(mode='after')
    def validate_enabled_has_credential(self) -> 'BiometricRegistration':
        """An enabled registration must name its credential."""
        if self.enabled and not self.credential_id:
            raise ValueError("Enabled registration requires a credential id")
        return self

    @classmethod
    def from_document(
        cls,
        user_id: str,
        document: Optional[dict[str, Any]],
    ) -> "BiometricRegistration":
        """Build from a raw user document (unrelated fields are ignored)."""
        return cls(user_id=user_id, **(document or {}))

    def to_document(self) -> dict[str, Any]:
        """Fields to merge into the user's document."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"user_id"},
            exclude_none=True,
        )

    @staticmethod
    def cleared_fields() -> dict[str, Any]:
        """Fields written on unregistration (merge, the document stays)."""
        return {
            "biometricEnabled": False,
            "biometricCredentialId": None,
            "biometricPublicKey": None,
            "biometricPublicKeySource": None,
        }


class DeviceCredentialRecord(BaseModel):
    """
    Non-secret routing data kept on the device.

    Only tells the bridge which credential id to assert against.
    """
    user_id: str = Field(..., min_length=1)
    credential_id: str = Field(..., min_length=1)
    user_email: str = ""

    @field_validator("credential_id")
    @classmethod
    def validate_credential_id(cls, v: str) -> str:
        """The id is handed to the platform as bytes, so it must decode."""
        if not base64url_to_bytes(v):
            raise ValueError("credential id decodes to nothing")
        return v


# =============================================================================
# PRIVATE VAULT
# =============================================================================

class VaultEntry(BaseModel):
    """
    Encrypted vault record, as written to local storage.

    encrypted_secret is base64(IV || ciphertext || tag).
    """
    user_id: str = Field(..., min_length=1)
    email: str
    encrypted_secret: str = Field(..., min_length=1, repr=False)
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="Creation time; the newest copy wins on load"
    )


class StoredSecret(BaseModel):
    """A decrypted vault entry. Never persisted, never logged."""
    user_id: str
    email: str
    secret: str = Field(..., repr=False)


# =============================================================================
# CEREMONY
# =============================================================================

class CeremonyContext(BaseModel):
    """
    Ephemeral context of one ceremony.

    The challenge is fresh per ceremony and never checked against a
    server-issued nonce.
    """
    model_config = ConfigDict(frozen=True)

    challenge: bytes = Field(..., min_length=32, max_length=32)
    rp_id: str = Field(..., min_length=1)

    @classmethod
    def fresh(cls, rp_id: str) -> "CeremonyContext":
        return cls(challenge=secrets.token_bytes(32), rp_id=rp_id)


# =============================================================================
# OUTCOMES
# =============================================================================

class SignInResult(BaseModel):
    """Result of the biometric sign-in bootstrap."""

    success: bool
    session: Optional[Session] = None
    failure: Optional[SignInFailure] = None
    auth_category: Optional[AuthErrorCategory] = Field(
        default=None,
        description="Identity-provider category when the provider failed"
    )
    message: str = ""
    requires_reregistration: bool = Field(
        default=False,
        description="The stored secret is unusable; biometrics must be re-enabled"
    )


class ActivationResult(BaseModel):
    """Result of password-confirmed biometric activation."""

    success: bool
    failure: Optional[ActivationFailure] = None
    message: str = ""
