"""
Credential Bridge

Runs the two WebAuthn ceremonies for the biometric sign-in feature and
normalizes their outcomes into (success flag, user-facing message).

TRUST MODEL: nothing is verified server-side. The challenge is random and
never checked against a server nonce, and the mirrored public key is never
used to verify an assertion. A passed ceremony only proves that the local
platform authenticator let the user through; what it unlocks is the
locally encrypted password. This protects a trusted device against casual
use by someone else, NOT against a compromised client forging a sign-in.

Registration:
    create credential -> mirror public record -> store device record
    -> encrypt password into the vault
Authentication:
    get assertion for the device's credential id. Local only, no session
    is opened here.
Unregistration:
    clear public record, device record and vault; every step is attempted.

Only one ceremony runs at a time; a concurrent request is rejected.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Optional, TypeVar
from uuid import UUID

import structlog
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from pydantic import ValidationError

from fortnight.audit import AuditLogger
from fortnight.config import AppSettings, BiometricSettings, get_settings
from fortnight.crypto import SymmetricVault, VaultError
from fortnight.models.audit import AuditEvent, AuditEventBuilder
from fortnight.models.biometric import (
    BiometricRegistration,
    CeremonyContext,
    CeremonyErrorKind,
    CeremonyState,
    DeviceCredentialRecord,
    PublicKeyMaterial,
    StoredSecret,
)
from fortnight.models.session import AuthUser
from fortnight.services.identity import IdentityProviderInterface
from fortnight.services.storage import (
    DocumentStoreInterface,
    KeyValueBackend,
    StorageError,
)
from fortnight.webauthn.errors import (
    NO_ASSERTION_MESSAGE,
    NO_CREDENTIAL_CREATED_MESSAGE,
    REGISTRATION_MESSAGES,
    UNAVAILABLE_MESSAGE,
    UNREGISTER_FAILED_MESSAGE,
    AUTHENTICATION_MESSAGES,
    DEFAULT_REGISTRATION_MESSAGE,
    BridgeError,
    authentication_message,
    classify_error,
    registration_message,
    terminal_state,
)
from fortnight.webauthn.options import (
    AttestationCredential,
    build_creation_options,
    build_request_options,
)
from fortnight.webauthn.platform import (
    PlatformAuthenticator,
    PlatformError,
    biometric_method_name,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")

USERS_COLLECTION = "users"

# Device record keys in the flat store
DEVICE_USER_ID_KEY = "biometric_user_id"
DEVICE_CREDENTIAL_ID_KEY = "biometric_credential_id"
DEVICE_USER_EMAIL_KEY = "biometric_user_email"

CEREMONY_ERRORS = (PlatformError, BridgeError, StorageError)


def extract_public_key_material(credential: AttestationCredential) -> PublicKeyMaterial:
    """
    Public key of a new credential, or the credential id in its place.

    Substitution is acceptable because the key is never used to verify
    anything; registration must not fail over it.
    """
    if credential.public_key:
        try:
            serialization.load_der_public_key(credential.public_key)
            return PublicKeyMaterial.extracted(credential.public_key)
        except (ValueError, UnsupportedAlgorithm) as e:
            logger.warning("public_key_unparseable", error=str(e))
    else:
        logger.warning("public_key_not_exposed", credential_id=credential.id)
    return PublicKeyMaterial.substituted(credential.id)


class CredentialBridge:
    """
    Biometric registration and authentication for the signed-in user.

    Observable state, for whatever surface embeds it:
        is_available  - a platform authenticator can be used
        is_registered - the user's public record says biometrics are on
        loading       - a ceremony or unregistration is running
        error         - last user-facing error message, or None
        state         - terminal state of the last ceremony
    """

    def __init__(
        self,
        identity: IdentityProviderInterface,
        document_store: DocumentStoreInterface,
        platform: PlatformAuthenticator,
        vault: SymmetricVault,
        device_store: KeyValueBackend,
        biometric_settings: Optional[BiometricSettings] = None,
        app_settings: Optional[AppSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._identity = identity
        self._documents = document_store
        self._platform = platform
        self._vault = vault
        self._device_store = device_store
        self._biometric = biometric_settings or get_settings().biometric
        self._app = app_settings or get_settings().app
        self._audit_logger = audit_logger
        self._ceremony_lock = asyncio.Lock()

        self.is_available = False
        self.is_registered = False
        self.loading = False
        self.error: Optional[str] = None
        self.error_kind: Optional[CeremonyErrorKind] = None
        self.state = CeremonyState.IDLE

    # =========================================================================
    # STATUS
    # =========================================================================

    @property
    def rp_id(self) -> str:
        return self._app.rp_id

    @property
    def ceremony_in_progress(self) -> bool:
        return self._ceremony_lock.locked()

    def biometric_name(self) -> str:
        return biometric_method_name(self._platform.user_agent)

    async def initialize(self) -> None:
        """Probe availability and mirror registration status."""
        await self.check_availability()
        await self.check_registration_status()

    async def check_availability(self) -> bool:
        try:
            self.is_available = await self._platform.is_available()
        except PlatformError as e:
            logger.warning("platform_availability_check_failed", error=e.name)
            self.is_available = False
        return self.is_available

    async def check_registration_status(self) -> bool:
        """
        Mirror the public record's enabled flag into is_registered.

        Advisory only: a stale False does not stop a leftover vault entry
        from loading.
        """
        user = self._identity.current_user
        if user is None:
            return self.is_registered
        try:
            document = await self._documents.get_document(USERS_COLLECTION, user.uid)
        except StorageError as e:
            logger.error("registration_status_check_failed", user_id=user.uid, error=str(e))
            return self.is_registered

        self.is_registered = bool((document or {}).get("biometricEnabled", False))
        return self.is_registered

    async def get_registration(self) -> Optional[BiometricRegistration]:
        """The current user's public registration record, if readable."""
        user = self._identity.current_user
        if user is None:
            return None
        try:
            document = await self._documents.get_document(USERS_COLLECTION, user.uid)
        except StorageError as e:
            logger.error("registration_read_failed", user_id=user.uid, error=str(e))
            return None
        try:
            return BiometricRegistration.from_document(user.uid, document)
        except ValidationError as e:
            # The record can drift from the vault; an inconsistent one reads as absent
            logger.warning(
                "registration_record_invalid",
                user_id=user.uid,
                errors=e.error_count(),
            )
            return None

    async def get_device_record(self) -> Optional[DeviceCredentialRecord]:
        """Which credential this device asserts against, if any."""
        try:
            user_id = await self._device_store.get(DEVICE_USER_ID_KEY)
            credential_id = await self._device_store.get(DEVICE_CREDENTIAL_ID_KEY)
            email = await self._device_store.get(DEVICE_USER_EMAIL_KEY)
        except StorageError as e:
            logger.warning("device_record_read_failed", error=str(e))
            return None
        if not user_id or not credential_id:
            return None
        try:
            return DeviceCredentialRecord(
                user_id=user_id,
                credential_id=credential_id,
                user_email=email or "",
            )
        except ValidationError as e:
            logger.warning("device_record_invalid", errors=e.error_count())
            return None

    async def has_stored_credentials(self) -> bool:
        return await self.get_device_record() is not None

    async def get_saved_user_email(self) -> Optional[str]:
        stored = await self.get_secure_user_credentials()
        return stored.email if stored else None

    async def get_secure_user_credentials(self) -> Optional[StoredSecret]:
        """Decrypted vault entry, or None on any vault failure."""
        try:
            return await self._vault.load()
        except VaultError as e:
            logger.error("secure_credentials_unreadable", error=type(e).__name__)
            return None

    # =========================================================================
    # CEREMONY PLUMBING
    # =========================================================================

    @asynccontextmanager
    async def _ceremony(self) -> AsyncIterator[None]:
        async with self._ceremony_lock:
            self.loading = True
            self.error = None
            self.error_kind = None
            self.state = CeremonyState.REQUESTING
            try:
                yield
            finally:
                self.loading = False

    def _reject_concurrent(self, operation: str) -> bool:
        logger.warning("ceremony_rejected_in_progress", operation=operation)
        self.error = REGISTRATION_MESSAGES[CeremonyErrorKind.CEREMONY_IN_PROGRESS]
        self.error_kind = CeremonyErrorKind.CEREMONY_IN_PROGRESS
        return False

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        """Apply the outer wall-clock bound to a platform call."""
        try:
            return await asyncio.wait_for(
                awaitable,
                timeout=self._biometric.outer_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise BridgeError(
                CeremonyErrorKind.USER_CANCELLED,
                REGISTRATION_MESSAGES[CeremonyErrorKind.USER_CANCELLED],
            )

    def _succeed(self) -> None:
        # Clears a rejection recorded while this ceremony was running
        self.state = CeremonyState.SUCCEEDED
        self.error_kind = None
        self.error = None

    def _fail(self, kind: CeremonyErrorKind, message: str) -> None:
        self.state = terminal_state(kind)
        self.error_kind = kind
        self.error = message

    async def _audit(self, event: AuditEvent) -> None:
        if self._audit_logger:
            await self._audit_logger.log(event)

    # =========================================================================
    # REGISTER
    # =========================================================================

    async def register(self, password: str, correlation_id: Optional[UUID] = None) -> bool:
        """
        Create a biometric credential for the current user and vault the password.

        Returns True iff the ceremony succeeded and the public record was
        written. A vault failure afterwards is logged, not reported.
        """
        if self.ceremony_in_progress:
            return self._reject_concurrent("register")

        async with self._ceremony():
            user = self._identity.current_user
            try:
                if user is None:
                    raise BridgeError(
                        CeremonyErrorKind.NOT_AUTHENTICATED,
                        REGISTRATION_MESSAGES[CeremonyErrorKind.NOT_AUTHENTICATED],
                    )
                if not await self.check_availability():
                    raise BridgeError(CeremonyErrorKind.UNSUPPORTED, UNAVAILABLE_MESSAGE)

                logger.info("biometric_registration_started", user_id=user.uid, rp_id=self.rp_id)
                context = CeremonyContext.fresh(self.rp_id)

                # Ask the platform to refuse a second credential for this user
                exclude = []
                device_record = await self.get_device_record()
                if device_record and device_record.user_id == user.uid:
                    exclude.append(device_record.credential_id)

                credential = await self._bounded(
                    self._platform.create(
                        build_creation_options(self._biometric, context, user, exclude)
                    )
                )
                if credential is None:
                    raise BridgeError(CeremonyErrorKind.UNKNOWN, NO_CREDENTIAL_CREATED_MESSAGE)

                material = extract_public_key_material(credential)
                registration = BiometricRegistration(
                    user_id=user.uid,
                    enabled=True,
                    credential_id=credential.id,
                    public_key_material=material.encoded,
                    public_key_source=material.source,
                    registered_at=datetime.now(timezone.utc),
                    email=user.email,
                    device={
                        "userAgent": self._platform.user_agent,
                        "platform": self._platform.platform_name,
                    },
                )
                await self._documents.set_document(
                    USERS_COLLECTION,
                    user.uid,
                    registration.to_document(),
                    merge=True,
                )
            except CEREMONY_ERRORS as e:
                kind = classify_error(e)
                message = (
                    DEFAULT_REGISTRATION_MESSAGE
                    if isinstance(e, StorageError)
                    else registration_message(kind, e)
                )
                self._fail(kind, message)
                if isinstance(e, StorageError):
                    await self._audit(AuditEventBuilder.external_service_error(
                        service="document_store",
                        error_message=str(e),
                        correlation_id=correlation_id,
                    ))
                logger.warning(
                    "biometric_registration_failed",
                    user_id=user.uid if user else None,
                    kind=kind.value,
                    error=str(e),
                )
                await self._audit(AuditEventBuilder.biometric_registration_failed(
                    user_id=user.uid if user else None,
                    error_kind=kind.value,
                    error_message=str(e),
                    correlation_id=correlation_id,
                ))
                return False

            await self._store_local_half(user, credential.id, password, correlation_id)

            self.is_registered = True
            self._succeed()
            logger.info(
                "biometric_registered",
                user_id=user.uid,
                public_key_source=material.source.value,
            )
            await self._audit(AuditEventBuilder.biometric_registered(
                user_id=user.uid,
                credential_id=credential.id,
                public_key_source=material.source.value,
                correlation_id=correlation_id,
            ))
            return True

    async def _store_local_half(
        self,
        user: AuthUser,
        credential_id: str,
        password: str,
        correlation_id: Optional[UUID],
    ) -> None:
        """Device record and vault. Failures here never fail registration."""
        try:
            await self._device_store.set(DEVICE_USER_ID_KEY, user.uid)
            await self._device_store.set(DEVICE_CREDENTIAL_ID_KEY, credential_id)
            await self._device_store.set(DEVICE_USER_EMAIL_KEY, user.email or "")
        except StorageError as e:
            logger.error("device_record_write_failed", user_id=user.uid, error=str(e))

        previous_owner = await self._vault.current_owner()
        if previous_owner and previous_owner != user.uid:
            await self._audit(AuditEventBuilder.vault_slot_overwritten(
                previous_user_id=previous_owner,
                user_id=user.uid,
            ))

        try:
            backends = await self._vault.save(user.uid, user.email or "", password)
        except VaultError as e:
            logger.error("vault_save_failed", user_id=user.uid, error=type(e).__name__)
            await self._audit(AuditEventBuilder.vault_save_failed(
                user_id=user.uid,
                error_message=str(e),
                correlation_id=correlation_id,
            ))
            return

        await self._audit(AuditEventBuilder.vault_saved(
            user_id=user.uid,
            backends=backends,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # AUTHENTICATE
    # =========================================================================

    async def authenticate(self, correlation_id: Optional[UUID] = None) -> bool:
        """
        Local biometric check against this device's credential.

        No password or session action happens here.
        """
        if self.ceremony_in_progress:
            return self._reject_concurrent("authenticate")

        async with self._ceremony():
            try:
                record = await self.get_device_record()
                if record is None:
                    raise BridgeError(
                        CeremonyErrorKind.NO_DEVICE_CREDENTIAL,
                        AUTHENTICATION_MESSAGES[CeremonyErrorKind.NO_DEVICE_CREDENTIAL],
                    )

                context = CeremonyContext.fresh(self.rp_id)
                options = build_request_options(self._biometric, context, record.credential_id)
                assertion = await self._bounded(self._platform.get(options))
                if assertion is None:
                    raise BridgeError(CeremonyErrorKind.UNKNOWN, NO_ASSERTION_MESSAGE)
            except CEREMONY_ERRORS as e:
                kind = classify_error(e)
                self._fail(kind, authentication_message(kind, e))
                logger.warning("biometric_authentication_failed", kind=kind.value, error=str(e))
                await self._audit(AuditEventBuilder.biometric_denied(
                    error_kind=kind.value,
                    error_message=str(e),
                    correlation_id=correlation_id,
                ))
                return False

            self._succeed()
            logger.info("biometric_authenticated", credential_id=assertion.id)
            await self._audit(AuditEventBuilder.biometric_authenticated(
                credential_id=assertion.id,
                correlation_id=correlation_id,
            ))
            return True

    # =========================================================================
    # UNREGISTER
    # =========================================================================

    async def unregister(self, correlation_id: Optional[UUID] = None) -> bool:
        """
        Disable biometrics for the current user on this device.

        Every cleanup step is attempted. Success means the public record
        was cleared; device record and vault cleanup are best-effort.
        """
        user = self._identity.current_user
        if user is None:
            self.error = UNREGISTER_FAILED_MESSAGE
            logger.warning("biometric_unregister_without_user")
            return False
        if self.ceremony_in_progress:
            return self._reject_concurrent("unregister")

        failed_steps = []
        async with self._ceremony_lock:
            self.loading = True
            self.error = None
            self.error_kind = None
            try:
                try:
                    await self._documents.set_document(
                        USERS_COLLECTION,
                        user.uid,
                        BiometricRegistration.cleared_fields(),
                        merge=True,
                    )
                except StorageError as e:
                    failed_steps.append("document_store")
                    logger.error("registration_clear_failed", user_id=user.uid, error=str(e))
                    await self._audit(AuditEventBuilder.external_service_error(
                        service="document_store",
                        error_message=str(e),
                        correlation_id=correlation_id,
                    ))

                try:
                    for key in (DEVICE_USER_ID_KEY, DEVICE_CREDENTIAL_ID_KEY, DEVICE_USER_EMAIL_KEY):
                        await self._device_store.delete(key)
                except StorageError as e:
                    failed_steps.append("device_record")
                    logger.error("device_record_clear_failed", user_id=user.uid, error=str(e))

                await self._vault.remove()
            finally:
                self.loading = False

        await self._audit(AuditEventBuilder.biometric_unregistered(
            user_id=user.uid,
            failed_steps=failed_steps,
            correlation_id=correlation_id,
        ))

        if "document_store" in failed_steps:
            self.error = UNREGISTER_FAILED_MESSAGE
            return False

        self.is_registered = False
        logger.info("biometric_unregistered", user_id=user.uid, failed_steps=failed_steps)
        return True
