"""
Tests for the Credential Bridge.

Ceremonies run against the software platform authenticator; the identity
provider and stores are in-memory fakes.
"""

import asyncio
import base64

import pytest

from fortnight.config import BiometricSettings
from fortnight.crypto import SymmetricVault
from fortnight.models.audit import AuditEventType
from fortnight.models.biometric import CeremonyErrorKind, CeremonyState, PublicKeySource
from fortnight.webauthn import (
    DEVICE_CREDENTIAL_ID_KEY,
    DEVICE_USER_EMAIL_KEY,
    DEVICE_USER_ID_KEY,
    USERS_COLLECTION,
    SoftwarePlatformAuthenticator,
)
from fortnight.webauthn.errors import (
    AUTHENTICATION_MESSAGES,
    DEFAULT_REGISTRATION_MESSAGE,
    REGISTRATION_MESSAGES,
    UNAVAILABLE_MESSAGE,
    UNREGISTER_FAILED_MESSAGE,
)

from tests.conftest import (
    USER_EMAIL,
    USER_ID,
    USER_PASSWORD,
    FailingBackend,
)


async def _event_types(audit_storage) -> list[AuditEventType]:
    return [e.event_type for e in await audit_storage.get_recent_events()]


class TestStatus:
    """Tests for availability and registration status."""

    @pytest.mark.asyncio
    async def test_initialize_probes_platform_and_record(self, bridge, document_store):
        await document_store.set_document(USERS_COLLECTION, USER_ID, {"biometricEnabled": True})

        await bridge.initialize()

        assert bridge.is_available is True
        assert bridge.is_registered is True

    @pytest.mark.asyncio
    async def test_unavailable_platform(self, make_bridge):
        bridge = make_bridge(
            platform=SoftwarePlatformAuthenticator("http://localhost:3000", available=False)
        )
        assert await bridge.check_availability() is False

    @pytest.mark.asyncio
    async def test_status_without_document(self, bridge):
        assert await bridge.check_registration_status() is False

    @pytest.mark.asyncio
    async def test_status_without_user(self, bridge, identity):
        identity.sign_out()
        assert await bridge.check_registration_status() is False

    def test_biometric_name_from_user_agent(self, bridge):
        assert bridge.biometric_name() == "Face ID / Touch ID"


class TestRegister:
    """Tests for the registration ceremony."""

    @pytest.mark.asyncio
    async def test_register_success(self, bridge, document_store, device_store, vault):
        """A passed ceremony mirrors the record, the device record and the vault."""
        assert await bridge.register(USER_PASSWORD) is True

        assert bridge.is_registered is True
        assert bridge.state == CeremonyState.SUCCEEDED
        assert bridge.error is None
        assert bridge.loading is False

        document = await document_store.get_document(USERS_COLLECTION, USER_ID)
        assert document["biometricEnabled"] is True
        assert document["biometricPublicKeySource"] == PublicKeySource.EXTRACTED.value
        assert document["email"] == USER_EMAIL
        assert document["biometricRegisteredAt"]
        assert document["biometricDevice"]["platform"] == "iPhone"

        credential_id = await device_store.get(DEVICE_CREDENTIAL_ID_KEY)
        assert document["biometricCredentialId"] == credential_id
        assert await device_store.get(DEVICE_USER_ID_KEY) == USER_ID
        assert await device_store.get(DEVICE_USER_EMAIL_KEY) == USER_EMAIL

        stored = await vault.load()
        assert stored.secret == USER_PASSWORD
        assert stored.email == USER_EMAIL

    @pytest.mark.asyncio
    async def test_register_merges_into_existing_document(self, bridge, document_store):
        """Unrelated user fields survive registration."""
        await document_store.set_document(USERS_COLLECTION, USER_ID, {"displayName": "Ana"})

        await bridge.register(USER_PASSWORD)

        document = await document_store.get_document(USERS_COLLECTION, USER_ID)
        assert document["displayName"] == "Ana"
        assert document["biometricEnabled"] is True

    @pytest.mark.asyncio
    async def test_public_key_substituted_when_not_exposed(self, make_bridge, document_store):
        """No exposed key: the credential id is encoded in its place."""
        bridge = make_bridge(
            platform=SoftwarePlatformAuthenticator("http://localhost:3000", expose_public_key=False)
        )

        assert await bridge.register(USER_PASSWORD) is True

        document = await document_store.get_document(USERS_COLLECTION, USER_ID)
        assert document["biometricPublicKeySource"] == PublicKeySource.SUBSTITUTED.value
        expected = base64.b64encode(document["biometricCredentialId"].encode("utf-8"))
        assert document["biometricPublicKey"] == expected.decode("ascii")

    @pytest.mark.asyncio
    async def test_register_requires_user(self, bridge, identity, platform):
        identity.sign_out()

        assert await bridge.register(USER_PASSWORD) is False

        assert bridge.error == "Usuario no autenticado"
        assert bridge.error_kind == CeremonyErrorKind.NOT_AUTHENTICATED
        assert bridge.state == CeremonyState.FAILED
        assert platform.credential_count == 0

    @pytest.mark.asyncio
    async def test_register_unavailable(self, make_bridge):
        bridge = make_bridge(
            platform=SoftwarePlatformAuthenticator("http://localhost:3000", available=False)
        )

        assert await bridge.register(USER_PASSWORD) is False

        assert bridge.error == UNAVAILABLE_MESSAGE
        assert bridge.state == CeremonyState.UNSUPPORTED

    @pytest.mark.asyncio
    async def test_register_denied(self, bridge, verification, vault, audit_storage):
        """Declining the prompt maps to PermissionDenied and stores nothing."""
        verification.approve = False

        assert await bridge.register(USER_PASSWORD) is False

        assert bridge.state == CeremonyState.DENIED
        assert bridge.error == REGISTRATION_MESSAGES[CeremonyErrorKind.PERMISSION_DENIED]
        assert await vault.load() is None
        assert AuditEventType.BIOMETRIC_REGISTRATION_FAILED in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_register_twice_is_a_conflict(self, bridge):
        """The existing credential is excluded; the user is told to deactivate it."""
        assert await bridge.register(USER_PASSWORD) is True

        assert await bridge.register(USER_PASSWORD) is False

        assert bridge.state == CeremonyState.STATE_CONFLICT
        assert bridge.error == (
            "Ya existe una credencial. Desactívala primero o usa otro dispositivo."
        )

    @pytest.mark.asyncio
    async def test_register_insecure_origin(self, make_bridge):
        bridge = make_bridge(
            platform=SoftwarePlatformAuthenticator("http://gastos.example")
        )

        assert await bridge.register(USER_PASSWORD) is False

        assert bridge.state == CeremonyState.SECURITY_VIOLATION
        assert "HTTPS" in bridge.error

    @pytest.mark.asyncio
    async def test_vault_failure_still_succeeds(self, make_bridge, vault_settings, audit_storage):
        """The registration record stands even when the secret was not stored."""
        broken_vault = SymmetricVault(
            primary=FailingBackend(),
            fallback=FailingBackend(),
            settings=vault_settings,
        )
        bridge = make_bridge(vault=broken_vault)

        assert await bridge.register(USER_PASSWORD) is True

        assert bridge.is_registered is True
        assert AuditEventType.VAULT_SAVE_FAILED in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_document_store_failure_fails_registration(
        self, bridge, document_store, audit_storage
    ):
        document_store.fail_writes = True

        assert await bridge.register(USER_PASSWORD) is False

        assert bridge.error == DEFAULT_REGISTRATION_MESSAGE
        assert bridge.is_registered is False
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_outer_timeout_aborts(self, make_bridge, verification):
        """A platform that never answers is cut off by the outer bound."""
        verification.release = asyncio.Event()
        bridge = make_bridge(biometric_settings=BiometricSettings(outer_timeout_seconds=0.05))

        assert await bridge.register(USER_PASSWORD) is False

        assert bridge.state == CeremonyState.ABORTED
        assert bridge.error_kind == CeremonyErrorKind.USER_CANCELLED
        assert bridge.loading is False

    @pytest.mark.asyncio
    async def test_registration_audited(self, bridge, audit_storage):
        await bridge.register(USER_PASSWORD)

        events = await audit_storage.get_events_by_entity("user", USER_ID)
        registered = [e for e in events if e.event_type == AuditEventType.BIOMETRIC_REGISTERED]
        assert len(registered) == 1
        assert USER_PASSWORD not in str(registered[0].to_log_dict())

    @pytest.mark.asyncio
    async def test_corrupted_device_record_does_not_block_registration(self, bridge, device_store):
        """An undecodable credential id is treated as no device record."""
        await device_store.set(DEVICE_USER_ID_KEY, USER_ID)
        await device_store.set(DEVICE_CREDENTIAL_ID_KEY, "abcde")

        assert await bridge.register(USER_PASSWORD) is True

        record = await bridge.get_device_record()
        assert record.credential_id != "abcde"


class TestAuthenticate:
    """Tests for the assertion ceremony."""

    @pytest.mark.asyncio
    async def test_authenticate_after_register(self, bridge, identity):
        await bridge.register(USER_PASSWORD)
        identity.sign_out()

        assert await bridge.authenticate() is True

        assert bridge.state == CeremonyState.SUCCEEDED
        assert bridge.error is None
        # Local check only
        assert identity.sign_in_calls == []

    @pytest.mark.asyncio
    async def test_authenticate_without_device_record(self, bridge):
        assert await bridge.authenticate() is False

        assert bridge.error_kind == CeremonyErrorKind.NO_DEVICE_CREDENTIAL
        assert bridge.error == AUTHENTICATION_MESSAGES[CeremonyErrorKind.NO_DEVICE_CREDENTIAL]

    @pytest.mark.asyncio
    async def test_authenticate_denied(self, bridge, verification, audit_storage):
        await bridge.register(USER_PASSWORD)
        verification.approve = False

        assert await bridge.authenticate() is False

        assert bridge.state == CeremonyState.DENIED
        assert bridge.error == "Autenticación cancelada o denegada"
        assert AuditEventType.BIOMETRIC_DENIED in await _event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_authenticate_with_credential_gone(self, bridge, device_store):
        """A device record naming an unknown credential is denied by the platform."""
        await bridge.register(USER_PASSWORD)
        await device_store.set(DEVICE_CREDENTIAL_ID_KEY, "AAAAAAAAAAAAAAAAAAAAAA")

        assert await bridge.authenticate() is False
        assert bridge.state == CeremonyState.DENIED

    @pytest.mark.asyncio
    async def test_concurrent_ceremony_rejected(self, bridge, verification, platform):
        """A second ceremony while one is running is rejected, not queued."""
        verification.release = asyncio.Event()
        first = asyncio.create_task(bridge.register(USER_PASSWORD))
        await verification.started.wait()

        assert bridge.ceremony_in_progress is True
        assert await bridge.authenticate() is False
        assert bridge.error_kind == CeremonyErrorKind.CEREMONY_IN_PROGRESS
        assert len(verification.prompts) == 1

        verification.release.set()
        assert await first is True
        assert bridge.ceremony_in_progress is False
        assert platform.credential_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id,credential_id", [
        (USER_ID, "abcde"),
        (12345, "AQI"),
    ])
    async def test_invalid_device_record_reads_as_absent(
        self, bridge, device_store, user_id, credential_id
    ):
        await device_store.set(DEVICE_USER_ID_KEY, user_id)
        await device_store.set(DEVICE_CREDENTIAL_ID_KEY, credential_id)

        assert await bridge.get_device_record() is None
        assert await bridge.authenticate() is False
        assert bridge.error_kind == CeremonyErrorKind.NO_DEVICE_CREDENTIAL


class TestUnregister:
    """Tests for unregistration."""

    @pytest.mark.asyncio
    async def test_unregister_clears_everything(self, bridge, document_store, vault):
        await bridge.register(USER_PASSWORD)

        assert await bridge.unregister() is True

        document = await document_store.get_document(USERS_COLLECTION, USER_ID)
        assert document["biometricEnabled"] is False
        assert document["biometricCredentialId"] is None
        assert document["email"] == USER_EMAIL
        assert bridge.is_registered is False
        assert await bridge.has_stored_credentials() is False
        assert await vault.load() is None

    @pytest.mark.asyncio
    async def test_unregister_is_idempotent(self, bridge):
        await bridge.register(USER_PASSWORD)

        assert await bridge.unregister() is True
        assert await bridge.unregister() is True

    @pytest.mark.asyncio
    async def test_unregister_allows_registering_again(self, bridge):
        await bridge.register(USER_PASSWORD)
        await bridge.unregister()

        assert await bridge.register(USER_PASSWORD) is True

    @pytest.mark.asyncio
    async def test_unregister_attempts_every_step(self, bridge, document_store, vault):
        """A failing document store still lets the local cleanup run."""
        await bridge.register(USER_PASSWORD)
        document_store.fail_writes = True

        assert await bridge.unregister() is False

        assert bridge.error == UNREGISTER_FAILED_MESSAGE
        assert await bridge.get_device_record() is None
        assert await vault.load() is None

    @pytest.mark.asyncio
    async def test_unregister_without_user(self, bridge, identity):
        identity.sign_out()

        assert await bridge.unregister() is False
        assert bridge.error == UNREGISTER_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_unregister_rejected_during_ceremony(self, bridge, verification):
        verification.release = asyncio.Event()
        running = asyncio.create_task(bridge.register(USER_PASSWORD))
        await verification.started.wait()

        assert await bridge.unregister() is False
        assert bridge.error_kind == CeremonyErrorKind.CEREMONY_IN_PROGRESS
        assert bridge.loading is True

        verification.release.set()
        assert await running is True
        assert bridge.loading is False
        assert await bridge.has_stored_credentials() is True


class TestLocalReaders:
    """Tests for the device record and vault readers."""

    @pytest.mark.asyncio
    async def test_readers_after_register(self, bridge):
        await bridge.register(USER_PASSWORD)

        assert await bridge.has_stored_credentials() is True
        assert await bridge.get_saved_user_email() == USER_EMAIL
        record = await bridge.get_device_record()
        assert record.user_id == USER_ID
        stored = await bridge.get_secure_user_credentials()
        assert stored.secret == USER_PASSWORD

    @pytest.mark.asyncio
    async def test_readers_swallow_vault_failures(self, make_bridge, vault_settings):
        bridge = make_bridge(vault=SymmetricVault(
            primary=FailingBackend(),
            fallback=FailingBackend(),
            settings=vault_settings,
        ))

        assert await bridge.get_saved_user_email() is None
        assert await bridge.get_secure_user_credentials() is None

    @pytest.mark.asyncio
    async def test_get_registration(self, bridge):
        assert (await bridge.get_registration()).enabled is False

        await bridge.register(USER_PASSWORD)

        registration = await bridge.get_registration()
        assert registration.enabled is True
        assert registration.public_key_source == PublicKeySource.EXTRACTED

    @pytest.mark.asyncio
    async def test_inconsistent_registration_reads_as_absent(self, bridge, document_store):
        """An enabled record without a credential id is not surfaced."""
        await document_store.set_document(
            USERS_COLLECTION,
            USER_ID,
            {"biometricEnabled": True, "biometricCredentialId": ""},
        )

        assert await bridge.get_registration() is None
