"""
Symmetric Vault

Keeps the user's password on the device, encrypted, so that a passed
biometric check can open a normal password session.

Cryptography:
- key = SHA-256(user_id + fixed salt), used as an AES-256-GCM key
- blob = base64(nonce (12 bytes) || ciphertext || tag (16 bytes))
- a fresh random nonce for every encryption

The key is deterministic, so no key is stored anywhere. The salt is a
constant, not a secret: anyone who can read the store and knows the user
id can derive the key. The vault stops casual reading of the store, it
does not resist a compromised device.

Storage:
- the record is written to the primary (indexed) backend AND always to
  the fallback (flat) backend
- reads look at both; the newest entry wins, the primary on a tie
- a backend that rejects a write loses its old entry, so it cannot
  shadow the newer one
- deletion hits both and never raises

One device-wide slot: saving for a second account replaces the first.
"""

import base64
import binascii
import hashlib
import os
from typing import Optional

import structlog
from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import ValidationError

from fortnight.config import VaultSettings, get_settings
from fortnight.models.biometric import StoredSecret, VaultEntry
from fortnight.services.storage import KeyValueBackend, StorageError


logger = structlog.get_logger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16


class VaultError(Exception):
    """Base exception for vault operations."""
    pass


class CryptoUnavailableError(VaultError):
    """The AES-GCM primitive is not available in this environment."""
    pass


class DecryptionFailedError(VaultError):
    """
    The stored blob did not authenticate.

    Tampering, a wrong key and a corrupted record look the same on purpose.
    """
    pass


class StorageUnavailableError(VaultError):
    """Every local backend failed."""
    pass


class SymmetricVault:
    """
    Authenticated encryption of one credential blob, persisted locally.

    Usage:
        vault = SymmetricVault(primary=SqliteBackend(path), fallback=JsonFileBackend(path))
        await vault.save(user_id, email, password)
        stored = await vault.load()
    """

    def __init__(
        self,
        primary: Optional[KeyValueBackend],
        fallback: KeyValueBackend,
        settings: Optional[VaultSettings] = None,
    ):
        self._primary = primary
        self._fallback = fallback
        self._settings = settings or get_settings().vault

    @property
    def backends(self) -> list[KeyValueBackend]:
        """Backends, primary first."""
        if self._primary is None:
            return [self._fallback]
        return [self._primary, self._fallback]

    # =========================================================================
    # CRYPTO
    # =========================================================================

    def derive_key(self, user_id: str) -> AESGCM:
        """Derive the user's AES-256-GCM key."""
        digest = hashlib.sha256(
            (user_id + self._settings.key_salt).encode("utf-8")
        ).digest()
        try:
            return AESGCM(digest)
        except UnsupportedAlgorithm as e:
            raise CryptoUnavailableError(f"AES-GCM unavailable: {e}")

    def encrypt(self, plaintext: str, user_id: str) -> str:
        """Encrypt under the user's key with a fresh nonce; returns base64."""
        key = self.derive_key(user_id)
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = key.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, opaque: str, user_id: str) -> str:
        """
        Inverse of encrypt.

        Raises:
            DecryptionFailedError: Wrong user, tampered or malformed blob
            CryptoUnavailableError: AES-GCM not available
        """
        key = self.derive_key(user_id)
        try:
            combined = base64.b64decode(opaque, validate=True)
        except (binascii.Error, ValueError):
            raise DecryptionFailedError("Stored credentials are not valid base64")

        if len(combined) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionFailedError("Stored credentials are truncated")

        nonce, ciphertext = combined[:NONCE_SIZE], combined[NONCE_SIZE:]
        try:
            plaintext = key.decrypt(nonce, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            raise DecryptionFailedError("Stored credentials failed authentication")

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def current_owner(self) -> Optional[str]:
        """
        User id of the entry occupying the slot, without decrypting it.

        Read errors count as "no owner".
        """
        for backend in self.backends:
            try:
                record = await backend.get(self._settings.slot_key)
            except StorageError:
                continue
            if isinstance(record, dict) and record.get("user_id"):
                return record["user_id"]
        return None

    async def save(self, user_id: str, email: str, secret: str) -> list[str]:
        """
        Encrypt and store the secret in every backend.

        Returns:
            Names of the backends that were written

        Raises:
            CryptoUnavailableError: Encryption not possible
            StorageUnavailableError: No backend accepted the write
        """
        entry = VaultEntry(
            user_id=user_id,
            email=email,
            encrypted_secret=self.encrypt(secret, user_id),
        )
        record = entry.model_dump(mode="json")

        previous_owner = await self.current_owner()
        if previous_owner and previous_owner != user_id:
            logger.warning(
                "vault_slot_overwritten",
                previous_user_id=previous_owner,
                user_id=user_id,
            )

        # Primary first, then ALWAYS the fallback
        written = []
        for backend in self.backends:
            try:
                await backend.set(self._settings.slot_key, record)
                written.append(backend.name)
            except StorageError as e:
                logger.warning("vault_backend_write_failed", backend=backend.name, error=str(e))
                await self._discard_stale(backend)

        if not written:
            raise StorageUnavailableError("No local backend accepted the encrypted credentials")

        logger.info("vault_saved", user_id=user_id, backends=written)
        return written

    async def _discard_stale(self, backend: KeyValueBackend) -> None:
        """Drop an entry the latest save could not replace."""
        try:
            await backend.delete(self._settings.slot_key)
        except StorageError as e:
            logger.warning("vault_stale_entry_kept", backend=backend.name, error=str(e))

    async def load(self) -> Optional[StoredSecret]:
        """
        Read and decrypt the slot.

        Every backend is read. When they disagree the newest well-formed
        entry wins, the primary's on a tie.

        Returns:
            The decrypted secret, or None if nothing is stored

        Raises:
            DecryptionFailedError: A record exists but cannot be opened
            StorageUnavailableError: Every backend failed to read
        """
        entries = []
        found = False
        failures = 0
        for backend in self.backends:
            try:
                record = await backend.get(self._settings.slot_key)
            except StorageError as e:
                failures += 1
                logger.warning("vault_backend_read_failed", backend=backend.name, error=str(e))
                continue
            if not record:
                continue
            found = True
            try:
                entries.append(VaultEntry.model_validate(record))
            except ValidationError:
                logger.warning("vault_record_malformed", backend=backend.name)

        if not found:
            if failures == len(self.backends):
                raise StorageUnavailableError("No local backend could be read")
            return None
        if not entries:
            raise DecryptionFailedError("Stored credentials record is malformed")

        entry = max(entries, key=lambda e: e.timestamp)
        secret = self.decrypt(entry.encrypted_secret, entry.user_id)
        return StoredSecret(user_id=entry.user_id, email=entry.email, secret=secret)

    async def remove(self) -> None:
        """Delete the slot from every backend. Best-effort: never raises."""
        for backend in self.backends:
            try:
                await backend.delete(self._settings.slot_key)
            except StorageError as e:
                logger.error("vault_backend_delete_failed", backend=backend.name, error=str(e))

    async def exists(self) -> bool:
        try:
            return await self.load() is not None
        except VaultError as e:
            logger.warning("vault_unreadable", error=type(e).__name__)
            return False
