"""WebAuthn credential bridge package."""

from fortnight.webauthn.bridge import (
    DEVICE_CREDENTIAL_ID_KEY,
    DEVICE_USER_EMAIL_KEY,
    DEVICE_USER_ID_KEY,
    USERS_COLLECTION,
    CredentialBridge,
    extract_public_key_material,
)
from fortnight.webauthn.errors import (
    BridgeError,
    authentication_message,
    classify_error,
    registration_message,
)
from fortnight.webauthn.options import (
    AttestationCredential,
    build_creation_options,
    build_request_options,
    platform_descriptor,
)
from fortnight.webauthn.platform import (
    PlatformAuthenticator,
    PlatformError,
    biometric_method_name,
)
from fortnight.webauthn.software import SoftwarePlatformAuthenticator

__all__ = [
    "DEVICE_CREDENTIAL_ID_KEY",
    "DEVICE_USER_EMAIL_KEY",
    "DEVICE_USER_ID_KEY",
    "USERS_COLLECTION",
    "CredentialBridge",
    "extract_public_key_material",
    "BridgeError",
    "authentication_message",
    "classify_error",
    "registration_message",
    "AttestationCredential",
    "build_creation_options",
    "build_request_options",
    "platform_descriptor",
    "PlatformAuthenticator",
    "PlatformError",
    "biometric_method_name",
    "SoftwarePlatformAuthenticator",
]
