"""
Shared fixtures for the biometric sign-in tests.

No real network or device: a scripted identity provider, in-memory
stores and the software platform authenticator stand in for them.
"""

import asyncio
from typing import Any, Optional

import pytest

from fortnight.audit import AuditLogger
from fortnight.config import AppSettings, BiometricSettings, VaultSettings
from fortnight.crypto import SymmetricVault
from fortnight.models.session import AuthUser, Session
from fortnight.services.identity import AuthError, IdentityProviderInterface
from fortnight.services.storage import (
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    KeyValueBackend,
    MemoryBackend,
    StorageError,
)
from fortnight.webauthn import CredentialBridge, SoftwarePlatformAuthenticator


USER_ID = "user-123"
USER_EMAIL = "ana@gastos.com"
USER_PASSWORD = "secreto123"
IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15"


class FakeIdentityProvider(IdentityProviderInterface):
    """Scripted identity provider with email/password accounts."""

    def __init__(self):
        self._accounts: dict[str, tuple[str, str]] = {}
        self._current: Optional[AuthUser] = None
        self.sign_in_calls: list[str] = []
        self.reauth_calls = 0
        # Provider code raised by the next call, once
        self.next_error: Optional[str] = None

    def add_account(self, uid: str, email: str, password: str) -> AuthUser:
        self._accounts[email] = (uid, password)
        return AuthUser(uid=uid, email=email)

    def change_password(self, email: str, password: str) -> None:
        uid, _ = self._accounts[email]
        self._accounts[email] = (uid, password)

    def sign_in_as(self, user: Optional[AuthUser]) -> None:
        self._current = user

    def sign_out(self) -> None:
        self._current = None

    def _raise_scripted(self) -> None:
        if self.next_error:
            code, self.next_error = self.next_error, None
            raise AuthError(code, f"Firebase: Error ({code}).")

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._current

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        self.sign_in_calls.append(email)
        self._raise_scripted()
        account = self._accounts.get(email)
        if account is None:
            raise AuthError("auth/user-not-found")
        uid, expected = account
        if password != expected:
            raise AuthError("auth/wrong-password")
        self._current = AuthUser(uid=uid, email=email)
        return Session(user=self._current, id_token=f"token-{uid}")

    async def reauthenticate(self, user: AuthUser, password: str) -> None:
        self.reauth_calls += 1
        self._raise_scripted()
        _, expected = self._accounts[user.email]
        if password != expected:
            raise AuthError("auth/wrong-password")


class FailingBackend(KeyValueBackend):
    """Key-value backend whose every operation fails."""

    name = "broken"

    async def get(self, key: str) -> Optional[Any]:
        raise StorageError("backend is broken")

    async def set(self, key: str, value: Any) -> None:
        raise StorageError("backend is broken")

    async def delete(self, key: str) -> None:
        raise StorageError("backend is broken")


class ToggleDocumentStore(InMemoryDocumentStore):
    """In-memory document store whose writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    async def set_document(self, collection, doc_id, fields, merge=True):
        if self.fail_writes:
            raise StorageError("document store unreachable")
        return await super().set_document(collection, doc_id, fields, merge=merge)


class UserVerification:
    """User-verification callback for the software authenticator."""

    def __init__(self):
        self.approve = True
        self.prompts: list[str] = []
        self.started = asyncio.Event()
        self.release: Optional[asyncio.Event] = None

    async def __call__(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        return self.approve


# =============================================================================
# SETTINGS
# =============================================================================

@pytest.fixture
def vault_settings(tmp_path):
    return VaultSettings(storage_dir=str(tmp_path / "store"))


@pytest.fixture
def app_settings():
    return AppSettings(
        app_environment="development",
        app_hostname="localhost",
        app_origin="http://localhost:3000",
        email_domain="gastos.com",
    )


@pytest.fixture
def biometric_settings():
    return BiometricSettings(outer_timeout_seconds=5)


# =============================================================================
# COLLABORATORS
# =============================================================================

@pytest.fixture
def identity():
    provider = FakeIdentityProvider()
    user = provider.add_account(USER_ID, USER_EMAIL, USER_PASSWORD)
    provider.sign_in_as(user)
    return provider


@pytest.fixture
def document_store():
    return ToggleDocumentStore()


@pytest.fixture
def device_store():
    return MemoryBackend()


@pytest.fixture
def vault(vault_settings):
    return SymmetricVault(
        primary=MemoryBackend(),
        fallback=MemoryBackend(),
        settings=vault_settings,
    )


@pytest.fixture
def verification():
    return UserVerification()


@pytest.fixture
def platform(verification):
    return SoftwarePlatformAuthenticator(
        origin="http://localhost:3000",
        verify_user=verification,
        user_agent=IPHONE_UA,
        platform_name="iPhone",
    )


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def make_bridge(identity, document_store, device_store, vault, platform,
                biometric_settings, app_settings, audit_logger):
    """Build a bridge, overriding any collaborator by keyword."""
    def _make(**overrides) -> CredentialBridge:
        components = {
            "identity": identity,
            "document_store": document_store,
            "platform": platform,
            "vault": vault,
            "device_store": device_store,
            "biometric_settings": biometric_settings,
            "app_settings": app_settings,
            "audit_logger": audit_logger,
        }
        components.update(overrides)
        return CredentialBridge(**components)
    return _make


@pytest.fixture
def bridge(make_bridge):
    return make_bridge()
