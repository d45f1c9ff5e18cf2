"""
Platform Authenticator Interface

The device's WebAuthn surface (navigator.credentials in a browser, a
native bridge on mobile, a software authenticator in development).

Platforms report failures as DOMException names; PlatformError carries
that name unchanged so the bridge can classify it.
"""

from abc import ABC, abstractmethod
from typing import Optional

from webauthn.helpers.structs import (
    AuthenticationCredential,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialRequestOptions,
)

from fortnight.webauthn.options import AttestationCredential


class PlatformError(Exception):
    """
    Failure reported by the platform during a ceremony.

    name is the DOMException name, e.g. 'NotAllowedError'.
    """

    def __init__(self, name: str, message: str = ""):
        super().__init__(message or name)
        self.name = name
        self.message = message


class PlatformAuthenticator(ABC):
    """Abstract platform authenticator."""

    @property
    def user_agent(self) -> str:
        """User agent string of the device, if known."""
        return ""

    @property
    def platform_name(self) -> str:
        """Operating system / platform label, if known."""
        return ""

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether a user-verifying platform authenticator can be used."""
        pass

    @abstractmethod
    async def create(
        self,
        options: PublicKeyCredentialCreationOptions,
    ) -> Optional[AttestationCredential]:
        """
        Run a credential creation ceremony.

        Returns:
            The new credential, or None if the platform returned nothing

        Raises:
            PlatformError: On any ceremony failure
        """
        pass

    @abstractmethod
    async def get(
        self,
        options: PublicKeyCredentialRequestOptions,
    ) -> Optional[AuthenticationCredential]:
        """
        Run a credential assertion ceremony.

        Returns:
            The assertion, or None if the platform returned nothing

        Raises:
            PlatformError: On any ceremony failure
        """
        pass


def biometric_method_name(user_agent: str) -> str:
    """Name of the biometric method to show, from the user agent."""
    ua = (user_agent or "").lower()

    if "iphone" in ua or "ipad" in ua:
        return "Face ID / Touch ID"
    elif "android" in ua:
        return "Huella Digital"
    elif "windows" in ua:
        return "Windows Hello"
    elif "mac" in ua:
        return "Touch ID"

    return "Biometría"
