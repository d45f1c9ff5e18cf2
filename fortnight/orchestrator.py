"""
Main Orchestrator for Biometric Sign-in

This module ties together all the components and defines the
end-to-end flows for:
1. Biometric sign-in (biometric check → vault secret → password sign-in)
2. Biometric activation (password confirmation → registration ceremony)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No identity-provider call happens before the local biometric check passes
- No registration ceremony runs without a fresh password confirmation
- A stored secret that stops working means re-registration, never a retry
- Every step is audited

Nothing raised by the collaborators escapes these flows: callers get a
result model with a failure category and a message for the user.
"""

from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from fortnight.audit import AuditLogger, create_correlation_id
from fortnight.config import get_settings, validate_all_settings
from fortnight.crypto import DecryptionFailedError, SymmetricVault, VaultError
from fortnight.models.biometric import (
    ActivationFailure,
    ActivationResult,
    SignInFailure,
    SignInResult,
)
from fortnight.models.session import AuthErrorCategory
from fortnight.services.identity import (
    AuthError,
    IdentityProviderInterface,
    synthesize_email,
)
from fortnight.services.storage import (
    DocumentStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    StorageError,
    probe_backends,
)
from fortnight.webauthn import CredentialBridge, PlatformAuthenticator
from fortnight.webauthn.errors import DEFAULT_REGISTRATION_MESSAGE


logger = structlog.get_logger(__name__)


# Sign-in button copy
BIOMETRIC_FAILED_MESSAGE = "Autenticación biométrica fallida"
NO_STORED_CREDENTIALS_MESSAGE = "No se encontraron credenciales guardadas"
INVALID_STORED_CREDENTIALS_MESSAGE = (
    "Credenciales inválidas. Reactiva la biometría desde tu perfil."
)
TOO_MANY_ATTEMPTS_MESSAGE = "Demasiados intentos. Espera unos minutos."
SIGN_IN_RETRY_MESSAGE = "Error al iniciar sesión. Intenta nuevamente."

# Login form copy
MISSING_FIELDS_MESSAGE = "Por favor completa todos los campos"
PASSWORD_SIGN_IN_MESSAGES: dict[AuthErrorCategory, str] = {
    AuthErrorCategory.WRONG_PASSWORD: "Contraseña incorrecta",
    AuthErrorCategory.INVALID_EMAIL: "El formato del email no es válido",
    AuthErrorCategory.NETWORK_FAILURE: "Error de conexión. Verifica tu conexión a internet.",
    AuthErrorCategory.TOO_MANY_ATTEMPTS: TOO_MANY_ATTEMPTS_MESSAGE,
}

# Activation dialog copy
EMPTY_PASSWORD_MESSAGE = "Ingresa tu contraseña para activar la biometría"
NOT_AUTHENTICATED_MESSAGE = "Usuario no autenticado"
CONFIRMATION_MESSAGES: dict[AuthErrorCategory, str] = {
    AuthErrorCategory.WRONG_PASSWORD: "Contraseña incorrecta",
    AuthErrorCategory.TOO_MANY_ATTEMPTS: TOO_MANY_ATTEMPTS_MESSAGE,
    AuthErrorCategory.REQUIRES_RECENT_LOGIN: (
        "Por seguridad, necesitas iniciar sesión nuevamente para activar la biometría"
    ),
    AuthErrorCategory.NETWORK_FAILURE: "Error de conexión. Verifica tu conexión a internet.",
}
CONFIRMATION_FAILED_MESSAGE = "No se pudo verificar la contraseña"

ACTIVATION_FAILURES: dict[AuthErrorCategory, ActivationFailure] = {
    AuthErrorCategory.WRONG_PASSWORD: ActivationFailure.WRONG_PASSWORD,
    AuthErrorCategory.TOO_MANY_ATTEMPTS: ActivationFailure.TOO_MANY_ATTEMPTS,
    AuthErrorCategory.REQUIRES_RECENT_LOGIN: ActivationFailure.REQUIRES_RECENT_LOGIN,
    AuthErrorCategory.NETWORK_FAILURE: ActivationFailure.NETWORK_FAILURE,
}


class SessionBootstrapper:
    """
    Opens an identity-provider session from a passed biometric check.

    Flow:
    1. Authenticate → local biometric ceremony (no network)
    2. Load → decrypt the vaulted password
    3. Sign in → ordinary password sign-in with the decrypted secret

    Each step only runs if the previous one succeeded.
    """

    def __init__(
        self,
        bridge: CredentialBridge,
        vault: SymmetricVault,
        identity: IdentityProviderInterface,
        audit_logger: Optional[AuditLogger] = None,
        email_domain: Optional[str] = None,
    ):
        self._bridge = bridge
        self._vault = vault
        self._identity = identity
        self._audit_logger = audit_logger
        self._email_domain = email_domain or get_settings().app.email_domain

    async def sign_in_with_biometric(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> SignInResult:
        """
        Run the biometric bootstrap.

        A rejected stored password is reported as STORED_CREDENTIALS_REJECTED
        with requires_reregistration set, never as a biometric failure.
        """
        correlation_id = correlation_id or create_correlation_id()

        # Step 1: local biometric gate
        if not await self._bridge.authenticate(correlation_id=correlation_id):
            return SignInResult(
                success=False,
                failure=SignInFailure.BIOMETRIC_DENIED,
                message=self._bridge.error or BIOMETRIC_FAILED_MESSAGE,
            )

        # Step 2: vaulted secret
        try:
            stored = await self._vault.load()
        except DecryptionFailedError:
            logger.error("stored_credentials_undecryptable")
            if self._audit_logger:
                await self._audit_logger.log_vault_decryption_failed(
                    user_id=None,
                    correlation_id=correlation_id,
                )
            return SignInResult(
                success=False,
                failure=SignInFailure.DECRYPTION_FAILED,
                message=INVALID_STORED_CREDENTIALS_MESSAGE,
                requires_reregistration=True,
            )
        except VaultError as e:
            logger.error("stored_credentials_unreadable", error=type(e).__name__)
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return SignInResult(
                success=False,
                failure=SignInFailure.SIGN_IN_FAILED,
                message=SIGN_IN_RETRY_MESSAGE,
            )

        if stored is None:
            logger.warning("stored_credentials_missing")
            if self._audit_logger:
                await self._audit_logger.log_vault_entry_missing(correlation_id)
            return SignInResult(
                success=False,
                failure=SignInFailure.NO_STORED_CREDENTIALS,
                message=NO_STORED_CREDENTIALS_MESSAGE,
            )

        # Step 3: password sign-in with the stored secret
        try:
            session = await self._identity.sign_in_with_password(stored.email, stored.secret)
        except AuthError as e:
            category = e.category
            rejected = category == AuthErrorCategory.WRONG_PASSWORD
            logger.warning(
                "stored_credentials_sign_in_failed",
                user_id=stored.user_id,
                code=e.code,
                category=category.value,
            )
            if self._audit_logger:
                await self._audit_logger.log_stored_credentials_rejected(
                    user_id=stored.user_id,
                    category=category.value,
                    error_code=e.code,
                    correlation_id=correlation_id,
                )
            if rejected:
                message = INVALID_STORED_CREDENTIALS_MESSAGE
            elif category == AuthErrorCategory.TOO_MANY_ATTEMPTS:
                message = TOO_MANY_ATTEMPTS_MESSAGE
            else:
                message = SIGN_IN_RETRY_MESSAGE
            return SignInResult(
                success=False,
                failure=(
                    SignInFailure.STORED_CREDENTIALS_REJECTED
                    if rejected
                    else SignInFailure.SIGN_IN_FAILED
                ),
                auth_category=category,
                message=message,
                requires_reregistration=rejected,
            )

        logger.info("biometric_sign_in_succeeded", user_id=session.user.uid)
        if self._audit_logger:
            await self._audit_logger.log_sign_in_succeeded(
                user_id=session.user.uid,
                correlation_id=correlation_id,
            )
        return SignInResult(success=True, session=session)

    async def sign_in_with_password(self, username: str, password: str) -> SignInResult:
        """Ordinary sign-in from the login form; bare usernames get the app domain."""
        if not username.strip() or not password:
            return SignInResult(
                success=False,
                failure=SignInFailure.MISSING_FIELDS,
                message=MISSING_FIELDS_MESSAGE,
            )

        email = synthesize_email(username, self._email_domain)
        try:
            session = await self._identity.sign_in_with_password(email, password)
        except AuthError as e:
            category = e.category
            logger.info("password_sign_in_failed", code=e.code, category=category.value)
            return SignInResult(
                success=False,
                failure=SignInFailure.SIGN_IN_FAILED,
                auth_category=category,
                message=PASSWORD_SIGN_IN_MESSAGES.get(
                    category,
                    f"Error al iniciar sesión: {e.message}",
                ),
            )
        return SignInResult(success=True, session=session)


class RegistrationGuard:
    """
    Confirms the password before biometrics can be enabled.

    Someone holding an unlocked session must not be able to add their
    own biometric: a fresh proof of the password is required first.
    """

    def __init__(
        self,
        identity: IdentityProviderInterface,
        bridge: CredentialBridge,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._identity = identity
        self._bridge = bridge
        self._audit_logger = audit_logger

    async def activate_with_password_confirmation(
        self,
        password: str,
        correlation_id: Optional[UUID] = None,
    ) -> ActivationResult:
        """Re-authenticate with the password, then register biometrics."""
        correlation_id = correlation_id or create_correlation_id()

        if not password or not password.strip():
            return ActivationResult(
                success=False,
                failure=ActivationFailure.EMPTY_PASSWORD,
                message=EMPTY_PASSWORD_MESSAGE,
            )

        user = self._identity.current_user
        if user is None:
            return ActivationResult(
                success=False,
                failure=ActivationFailure.NOT_AUTHENTICATED,
                message=NOT_AUTHENTICATED_MESSAGE,
            )

        try:
            await self._identity.reauthenticate(user, password)
        except AuthError as e:
            category = e.category
            logger.warning(
                "password_confirmation_failed",
                user_id=user.uid,
                code=e.code,
                category=category.value,
            )
            if self._audit_logger:
                await self._audit_logger.log_password_confirmation_failed(
                    user_id=user.uid,
                    category=category.value,
                    correlation_id=correlation_id,
                )
            return ActivationResult(
                success=False,
                failure=ACTIVATION_FAILURES.get(category, ActivationFailure.UNKNOWN),
                message=CONFIRMATION_MESSAGES.get(category, CONFIRMATION_FAILED_MESSAGE),
            )

        if not await self._bridge.register(password, correlation_id=correlation_id):
            return ActivationResult(
                success=False,
                failure=ActivationFailure.REGISTRATION_FAILED,
                message=self._bridge.error or DEFAULT_REGISTRATION_MESSAGE,
            )

        return ActivationResult(success=True)


def create_app_components(
    identity: IdentityProviderInterface,
    platform: PlatformAuthenticator,
    document_store: Optional[DocumentStoreInterface] = None,
    use_storage: bool = True,
) -> tuple[SessionBootstrapper, RegistrationGuard, CredentialBridge, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        identity: The identity provider of the running application
        platform: The device's platform authenticator
        document_store: Document store to use; defaults to Google Sheets
                        (or memory when storage is off or not configured)
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.

    Returns:
        (bootstrapper, guard, bridge, sheets_client)
    """
    settings = get_settings()
    sheets_client = None
    audit_logger = None

    # Startup check
    status = validate_all_settings()
    for name in ("biometric", "vault", "google_sheets", "app"):
        if not status[name]:
            logger.warning("settings_invalid", section=name, error=status.get(f"{name}_error"))

    if use_storage and status["google_sheets"]:
        try:
            sheets_client = GoogleSheetsClient()
            if document_store is None:
                document_store = GoogleSheetsDocumentStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except (ValidationError, StorageError) as e:
            # Storage not reachable - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            audit_logger = AuditLogger()  # Local-only logging
    else:
        audit_logger = AuditLogger()  # Local-only logging

    if document_store is None:
        document_store = InMemoryDocumentStore()

    # Local stores are probed once, here
    primary, fallback = probe_backends(settings.vault)
    vault = SymmetricVault(primary=primary, fallback=fallback, settings=settings.vault)

    bridge = CredentialBridge(
        identity=identity,
        document_store=document_store,
        platform=platform,
        vault=vault,
        device_store=fallback,
        biometric_settings=settings.biometric,
        app_settings=settings.app,
        audit_logger=audit_logger,
    )

    bootstrapper = SessionBootstrapper(
        bridge=bridge,
        vault=vault,
        identity=identity,
        audit_logger=audit_logger,
        email_domain=settings.app.email_domain,
    )

    guard = RegistrationGuard(
        identity=identity,
        bridge=bridge,
        audit_logger=audit_logger,
    )

    return bootstrapper, guard, bridge, sheets_client
