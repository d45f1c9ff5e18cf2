"""
Identity Models

The identity provider is an external collaborator. These models are the
only shapes of it the rest of the package sees.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthErrorCategory(str, Enum):
    """
    Categories of identity-provider failures.

    Provider error codes are many and vendor specific; callers only ever
    branch on these.
    """
    WRONG_PASSWORD = "wrong_password"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    ACCOUNT_DISABLED = "account_disabled"
    NETWORK_FAILURE = "network_failure"
    REQUIRES_RECENT_LOGIN = "requires_recent_login"
    INVALID_EMAIL = "invalid_email"
    UNKNOWN = "unknown"


class AuthUser(BaseModel):
    """The currently signed-in identity-provider user."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    uid: str = Field(
        ...,
        min_length=1,
        description="Opaque identity-provider subject id"
    )
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.email:
            return self.email.split("@")[0]
        return "Usuario"


class Session(BaseModel):
    """An authenticated identity-provider session."""

    user: AuthUser
    id_token: Optional[str] = Field(
        default=None,
        repr=False,
        description="Provider token, if the provider issues one"
    )
