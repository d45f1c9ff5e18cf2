"""
Configuration Management for Fortnight Budget

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from webauthn.helpers.cose import COSEAlgorithmIdentifier


class BiometricSettings(BaseSettings):
    """WebAuthn ceremony configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BIOMETRIC_",
        extra="ignore"
    )

    rp_name: str = Field(
        default="Control de Gastos",
        description="Relying party name shown by the platform prompt"
    )
    ceremony_timeout_ms: int = Field(
        default=60000,
        ge=10000,
        le=600000,
        description="Timeout handed to the platform for each ceremony"
    )
    outer_timeout_seconds: float = Field(
        default=90.0,
        gt=0,
        description="Wall-clock bound applied around a ceremony"
    )
    attestation: str = Field(
        default="direct",
        description="Attestation conveyance preference"
    )
    # COSE algorithm identifiers, in order of preference
    algorithms: list[int] = Field(
        default_factory=lambda: [-7, -257],
        description="ES256 (preferred by iOS) then RS256 (Windows Hello)"
    )

    @field_validator('attestation')
    @classmethod
    def validate_attestation(cls, v: str) -> str:
        allowed = {"none", "indirect", "direct", "enterprise"}
        if v not in allowed:
            raise ValueError(f"attestation must be one of {sorted(allowed)}")
        return v

    @field_validator('algorithms')
    @classmethod
    def validate_algorithms(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("at least one algorithm is required")
        known = {alg.value for alg in COSEAlgorithmIdentifier}
        unknown = [alg for alg in v if alg not in known]
        if unknown:
            raise ValueError(f"unsupported COSE algorithms: {unknown}")
        return v


class VaultSettings(BaseSettings):
    """Local encrypted credential vault configuration."""

    model_config = SettingsConfigDict(
        env_prefix="VAULT_",
        extra="ignore"
    )

    # Fixed and public. It scopes the derived key, it is not a secret.
    key_salt: str = Field(
        default="-secure-key-salt-2024",
        description="Constant appended to the user id before hashing"
    )
    storage_dir: str = Field(
        default=".fortnight",
        description="Directory holding the local stores"
    )
    indexed_db_name: str = Field(
        default="SecureAuthDB.sqlite3",
        description="File name of the indexed (SQLite) store"
    )
    flat_store_name: str = Field(
        default="local_storage.json",
        description="File name of the flat key-value store"
    )
    slot_key: str = Field(
        default="biometric_credentials",
        description="Storage key of the single device-wide vault slot"
    )

    @property
    def indexed_db_path(self) -> Path:
        return Path(self.storage_dir) / self.indexed_db_name

    @property
    def flat_store_path(self) -> Path:
        return Path(self.storage_dir) / self.flat_store_name


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Where the app is served from (APP_HOSTNAME, APP_ORIGIN)
    app_hostname: str = Field(
        default="localhost",
        description="Host name the application is served on"
    )
    app_origin: str = Field(
        default="http://localhost:3000",
        description="Full origin (scheme, host, port) of the application"
    )

    # Bare usernames become <username>@<email_domain>
    email_domain: str = Field(
        default="gastos.com",
        description="Domain appended to usernames without '@'"
    )

    @field_validator('app_hostname')
    @classmethod
    def validate_app_hostname(cls, v: str) -> str:
        v = v.strip().lower()
        if not v or "/" in v or ":" in v:
            raise ValueError("app_hostname must be a bare host name, without scheme or port")
        return v

    @property
    def rp_id(self) -> str:
        """Effective WebAuthn relying party id: the served host name."""
        return self.app_hostname


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def biometric(self) -> BiometricSettings:
        return BiometricSettings()

    @property
    def vault(self) -> VaultSettings:
        return VaultSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("biometric", "vault", "google_sheets", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
