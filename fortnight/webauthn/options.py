"""
WebAuthn Ceremony Options

Builds the publicKey options handed to the platform, using py_webauthn's
option generators and structs. options_to_json gives the browser shape.

Every ceremony asks for a platform authenticator, required user
verification and a discoverable (resident) key: nothing looks the user
up on a server before the assertion.
"""

from typing import Optional

from pydantic import BaseModel, Field
from webauthn import generate_authentication_options, generate_registration_options
from webauthn.helpers import base64url_to_bytes
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRequestOptions,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from fortnight.config import BiometricSettings
from fortnight.models.biometric import CeremonyContext
from fortnight.models.session import AuthUser


def platform_descriptor(credential_id: str) -> PublicKeyCredentialDescriptor:
    """Descriptor of a platform credential from its base64url id."""
    return PublicKeyCredentialDescriptor(
        id=base64url_to_bytes(credential_id),
        transports=[AuthenticatorTransport.INTERNAL],
    )


def build_creation_options(
    settings: BiometricSettings,
    context: CeremonyContext,
    user: AuthUser,
    exclude: Optional[list[str]] = None,
) -> PublicKeyCredentialCreationOptions:
    """
    Options for a credential creation ceremony.

    Args:
        settings: Relying party name, timeout, attestation and algorithms
        context: Fresh challenge and relying party id
        user: The signed-in user; their uid becomes the user handle
        exclude: base64url credential ids the platform must refuse to recreate
    """
    return generate_registration_options(
        rp_id=context.rp_id,
        rp_name=settings.rp_name,
        user_id=user.uid.encode("utf-8"),
        user_name=user.email or "usuario",
        user_display_name=user.display_name,
        challenge=context.challenge,
        timeout=settings.ceremony_timeout_ms,
        attestation=AttestationConveyancePreference(settings.attestation),
        authenticator_selection=AuthenticatorSelectionCriteria(
            authenticator_attachment=AuthenticatorAttachment.PLATFORM,
            resident_key=ResidentKeyRequirement.REQUIRED,
            require_resident_key=True,
            user_verification=UserVerificationRequirement.REQUIRED,
        ),
        exclude_credentials=[platform_descriptor(c) for c in exclude or []],
        supported_pub_key_algs=[COSEAlgorithmIdentifier(alg) for alg in settings.algorithms],
    )


def build_request_options(
    settings: BiometricSettings,
    context: CeremonyContext,
    credential_id: str,
) -> PublicKeyCredentialRequestOptions:
    """Options for an assertion against one known platform credential."""
    return generate_authentication_options(
        rp_id=context.rp_id,
        challenge=context.challenge,
        timeout=settings.ceremony_timeout_ms,
        allow_credentials=[platform_descriptor(credential_id)],
        user_verification=UserVerificationRequirement.REQUIRED,
    )


class AttestationCredential(BaseModel):
    """
    A newly created credential, as the platform returns it.

    public_key is the DER SubjectPublicKeyInfo from getPublicKey();
    platforms are not required to expose it.
    """

    id: str = Field(..., min_length=1, description="base64url credential id")
    raw_id: bytes
    type: str = "public-key"
    client_data_json: bytes = b""
    attestation_object: bytes = b""
    public_key: Optional[bytes] = None
    public_key_algorithm: Optional[int] = None
