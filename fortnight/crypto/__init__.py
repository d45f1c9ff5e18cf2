"""Local credential vault package."""

from fortnight.crypto.vault import (
    CryptoUnavailableError,
    DecryptionFailedError,
    StorageUnavailableError,
    SymmetricVault,
    VaultError,
)

__all__ = [
    "CryptoUnavailableError",
    "DecryptionFailedError",
    "StorageUnavailableError",
    "SymmetricVault",
    "VaultError",
]
