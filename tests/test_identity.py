"""
Tests for identity-provider error categorisation and email synthesis.
"""

import pytest

from fortnight.models.session import AuthErrorCategory
from fortnight.services.identity import AuthError, categorize_auth_error, synthesize_email


class TestCategorizeAuthError:
    """Tests for provider code categories."""

    @pytest.mark.parametrize("code", [
        "auth/wrong-password",
        "auth/user-not-found",
        "auth/invalid-credential",
        "auth/invalid-login-credentials",
    ])
    def test_wrong_password_codes(self, code):
        assert categorize_auth_error(code) == AuthErrorCategory.WRONG_PASSWORD

    def test_other_categories(self):
        assert categorize_auth_error("auth/too-many-requests") == AuthErrorCategory.TOO_MANY_ATTEMPTS
        assert categorize_auth_error("auth/user-disabled") == AuthErrorCategory.ACCOUNT_DISABLED
        assert categorize_auth_error("auth/network-request-failed") == AuthErrorCategory.NETWORK_FAILURE
        assert categorize_auth_error("auth/requires-recent-login") == AuthErrorCategory.REQUIRES_RECENT_LOGIN
        assert categorize_auth_error("auth/invalid-email") == AuthErrorCategory.INVALID_EMAIL

    def test_unknown_code(self):
        assert categorize_auth_error("auth/something-new") == AuthErrorCategory.UNKNOWN

    def test_auth_error_category(self):
        error = AuthError("auth/too-many-requests")
        assert error.category == AuthErrorCategory.TOO_MANY_ATTEMPTS
        assert error.message == "auth/too-many-requests"


class TestSynthesizeEmail:
    """Tests for username-to-email synthesis."""

    def test_bare_username(self):
        assert synthesize_email("ana", "gastos.com") == "ana@gastos.com"

    def test_email_is_unchanged(self):
        assert synthesize_email("ana@otro.com", "gastos.com") == "ana@otro.com"

    def test_whitespace_trimmed(self):
        assert synthesize_email("  ana ", "gastos.com") == "ana@gastos.com"
