"""Identity provider package."""

from fortnight.services.identity.interface import (
    AuthError,
    IdentityProviderInterface,
    categorize_auth_error,
    synthesize_email,
)

__all__ = [
    "AuthError",
    "IdentityProviderInterface",
    "categorize_auth_error",
    "synthesize_email",
]
