"""
Identity Provider Interface

The identity provider (email + password accounts) is an external
collaborator with no notion of biometrics. The bridge needs exactly three
things from it: who is signed in, a password sign-in, and a "prove you
still know the password" re-authentication.

DESIGN DECISION: The provider is injected, never imported as a global.
Tests pass a scripted provider; the application passes the real one from
its composition root.
"""

from abc import ABC, abstractmethod
from typing import Optional

from fortnight.models.session import AuthErrorCategory, AuthUser, Session


class AuthError(Exception):
    """
    Identity-provider failure.

    code is the provider's own error code (e.g. 'auth/wrong-password').
    """

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.message = message or code

    @property
    def category(self) -> AuthErrorCategory:
        return categorize_auth_error(self.code)


class IdentityProviderInterface(ABC):
    """Abstract interface for the password-based identity provider."""

    @property
    @abstractmethod
    def current_user(self) -> Optional[AuthUser]:
        """The signed-in user, or None."""
        pass

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """
        Open a session with email and password.

        Raises:
            AuthError: On any provider failure
        """
        pass

    @abstractmethod
    async def reauthenticate(self, user: AuthUser, password: str) -> None:
        """
        Prove recent knowledge of the password for an existing session.

        Raises:
            AuthError: On any provider failure
        """
        pass


# Provider codes, grouped by what the user can do about them
_AUTH_ERROR_CATEGORIES: dict[str, AuthErrorCategory] = {
    "auth/wrong-password": AuthErrorCategory.WRONG_PASSWORD,
    "auth/user-not-found": AuthErrorCategory.WRONG_PASSWORD,
    "auth/invalid-credential": AuthErrorCategory.WRONG_PASSWORD,
    "auth/invalid-login-credentials": AuthErrorCategory.WRONG_PASSWORD,
    "auth/too-many-requests": AuthErrorCategory.TOO_MANY_ATTEMPTS,
    "auth/user-disabled": AuthErrorCategory.ACCOUNT_DISABLED,
    "auth/network-request-failed": AuthErrorCategory.NETWORK_FAILURE,
    "auth/requires-recent-login": AuthErrorCategory.REQUIRES_RECENT_LOGIN,
    "auth/user-token-expired": AuthErrorCategory.REQUIRES_RECENT_LOGIN,
    "auth/user-mismatch": AuthErrorCategory.REQUIRES_RECENT_LOGIN,
    "auth/invalid-email": AuthErrorCategory.INVALID_EMAIL,
}


def categorize_auth_error(code: str) -> AuthErrorCategory:
    """Map a provider error code to its category."""
    return _AUTH_ERROR_CATEGORIES.get(code, AuthErrorCategory.UNKNOWN)


def synthesize_email(username: str, domain: str) -> str:
    """
    Turn a bare username into a login email.

    Inputs that already contain '@' are returned unchanged (trimmed).
    """
    username = username.strip()
    if "@" in username:
        return username
    return f"{username}@{domain}"
