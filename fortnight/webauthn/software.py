"""
Software Platform Authenticator

An in-process stand-in for a device authenticator, for local development
and tests. It behaves like a platform authenticator where it matters to
the bridge:

- refuses insecure origins and relying-party ids outside the origin
  (SecurityError)
- refuses to create a credential listed in excludeCredentials
  (InvalidStateError)
- asks a user-verification callback before every ceremony
  (NotAllowedError when it says no)
- keeps resident ECDSA P-256 keys and returns real signed assertions

Keys live in memory only.
"""

import hashlib
import json
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AuthenticationCredential,
    AuthenticatorAssertionResponse,
    AuthenticatorAttachment,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialRequestOptions,
)

from fortnight.webauthn.options import AttestationCredential
from fortnight.webauthn.platform import PlatformAuthenticator, PlatformError


# authenticatorData flags: user present | user verified
FLAGS_UP_UV = 0x01 | 0x04

VerifyUser = Callable[[str], Awaitable[bool]]


@dataclass
class _ResidentCredential:
    raw_id: bytes
    rp_id: str
    user_handle: bytes
    private_key: ec.EllipticCurvePrivateKey
    sign_count: int = 0


class SoftwarePlatformAuthenticator(PlatformAuthenticator):
    """
    Platform authenticator simulated in software.

    Args:
        origin: Origin the "browser" is on, e.g. 'https://gastos.example'
        verify_user: Async callback deciding user verification; approves when None
        expose_public_key: Whether created credentials expose their public key
        available: What is_available() reports
    """

    def __init__(
        self,
        origin: str,
        verify_user: Optional[VerifyUser] = None,
        expose_public_key: bool = True,
        available: bool = True,
        user_agent: str = "",
        platform_name: str = "",
    ):
        parsed = urlparse(origin)
        self._origin = origin
        self._scheme = parsed.scheme
        self._host = parsed.hostname or ""
        self._verify_user = verify_user
        self._expose_public_key = expose_public_key
        self._available = available
        self._user_agent = user_agent
        self._platform_name = platform_name
        self._credentials: dict[bytes, _ResidentCredential] = {}

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def platform_name(self) -> str:
        return self._platform_name

    @property
    def credential_count(self) -> int:
        return len(self._credentials)

    async def is_available(self) -> bool:
        return self._available

    def _check_origin(self, rp_id: str) -> None:
        if self._scheme != "https" and self._host != "localhost":
            raise PlatformError("SecurityError", "The operation is insecure.")
        if rp_id != self._host and not self._host.endswith("." + rp_id):
            raise PlatformError(
                "SecurityError",
                f"The relying party id {rp_id!r} is not a registrable suffix of {self._host!r}.",
            )

    async def _verify(self, prompt: str) -> None:
        if self._verify_user is not None and not await self._verify_user(prompt):
            raise PlatformError(
                "NotAllowedError",
                "The operation either timed out or was not allowed.",
            )

    def _client_data(self, ceremony: str, challenge: bytes) -> bytes:
        return json.dumps(
            {
                "type": ceremony,
                "challenge": bytes_to_base64url(challenge),
                "origin": self._origin,
                "crossOrigin": False,
            },
            separators=(",", ":"),
        ).encode("utf-8")

    async def create(
        self,
        options: PublicKeyCredentialCreationOptions,
    ) -> Optional[AttestationCredential]:
        if not self._available:
            raise PlatformError("NotSupportedError", "No platform authenticator available.")
        self._check_origin(options.rp.id)

        algorithms = [p.alg for p in options.pub_key_cred_params]
        if COSEAlgorithmIdentifier.ECDSA_SHA_256 not in algorithms:
            raise PlatformError("NotSupportedError", "No supported algorithm requested.")

        for descriptor in options.exclude_credentials or []:
            if descriptor.id in self._credentials:
                raise PlatformError(
                    "InvalidStateError",
                    "The authenticator already holds an excluded credential.",
                )

        await self._verify(f"{options.rp.name}: {options.user.name}")

        # Resident keys: one per (rp, user handle)
        for raw_id, existing in list(self._credentials.items()):
            if existing.rp_id == options.rp.id and existing.user_handle == options.user.id:
                del self._credentials[raw_id]

        private_key = ec.generate_private_key(ec.SECP256R1())
        raw_id = os.urandom(16)
        self._credentials[raw_id] = _ResidentCredential(
            raw_id=raw_id,
            rp_id=options.rp.id,
            user_handle=options.user.id,
            private_key=private_key,
        )

        public_key = None
        if self._expose_public_key:
            public_key = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )

        return AttestationCredential(
            id=bytes_to_base64url(raw_id),
            raw_id=raw_id,
            client_data_json=self._client_data("webauthn.create", options.challenge),
            public_key=public_key,
            public_key_algorithm=COSEAlgorithmIdentifier.ECDSA_SHA_256.value,
        )

    async def get(
        self,
        options: PublicKeyCredentialRequestOptions,
    ) -> Optional[AuthenticationCredential]:
        if not self._available:
            raise PlatformError("NotSupportedError", "No platform authenticator available.")
        self._check_origin(options.rp_id)

        allowed = {descriptor.id for descriptor in options.allow_credentials or []}
        candidates = [
            c for c in self._credentials.values()
            if c.rp_id == options.rp_id and (not allowed or c.raw_id in allowed)
        ]
        if not candidates:
            # Platforms do not reveal whether a credential exists
            raise PlatformError(
                "NotAllowedError",
                "The operation either timed out or was not allowed.",
            )

        await self._verify(options.rp_id)

        credential = candidates[0]
        credential.sign_count += 1
        authenticator_data = (
            hashlib.sha256(options.rp_id.encode("utf-8")).digest()
            + bytes([FLAGS_UP_UV])
            + credential.sign_count.to_bytes(4, "big")
        )
        client_data_json = self._client_data("webauthn.get", options.challenge)
        signature = credential.private_key.sign(
            authenticator_data + hashlib.sha256(client_data_json).digest(),
            ec.ECDSA(hashes.SHA256()),
        )

        return AuthenticationCredential(
            id=bytes_to_base64url(credential.raw_id),
            raw_id=credential.raw_id,
            response=AuthenticatorAssertionResponse(
                client_data_json=client_data_json,
                authenticator_data=authenticator_data,
                signature=signature,
                user_handle=credential.user_handle,
            ),
            authenticator_attachment=AuthenticatorAttachment.PLATFORM,
        )
