"""
Ceremony Error Taxonomy

Maps platform failures to a small set of kinds, each with its terminal
ceremony state and the message shown to the user. The messages are the
only recovery guidance the user gets, so each kind says what to do.
"""

from typing import Optional

from fortnight.models.biometric import CeremonyErrorKind, CeremonyState


class BridgeError(Exception):
    """Failure detected by the bridge itself, before or after the platform call."""

    def __init__(self, kind: CeremonyErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


# DOMException name -> kind
PLATFORM_ERROR_KINDS: dict[str, CeremonyErrorKind] = {
    "NotAllowedError": CeremonyErrorKind.PERMISSION_DENIED,
    "NotSupportedError": CeremonyErrorKind.UNSUPPORTED,
    "InvalidStateError": CeremonyErrorKind.CREDENTIAL_CONFLICT,
    "AbortError": CeremonyErrorKind.USER_CANCELLED,
    "SecurityError": CeremonyErrorKind.SECURITY_CONTEXT_INVALID,
}

TERMINAL_STATES: dict[CeremonyErrorKind, CeremonyState] = {
    CeremonyErrorKind.PERMISSION_DENIED: CeremonyState.DENIED,
    CeremonyErrorKind.UNSUPPORTED: CeremonyState.UNSUPPORTED,
    CeremonyErrorKind.CREDENTIAL_CONFLICT: CeremonyState.STATE_CONFLICT,
    CeremonyErrorKind.USER_CANCELLED: CeremonyState.ABORTED,
    CeremonyErrorKind.SECURITY_CONTEXT_INVALID: CeremonyState.SECURITY_VIOLATION,
}

REGISTRATION_MESSAGES: dict[CeremonyErrorKind, str] = {
    CeremonyErrorKind.PERMISSION_DENIED: (
        "Permiso denegado. Permite el acceso a Face ID/Touch ID en "
        "Ajustes → Safari → Cámara y Micrófono."
    ),
    CeremonyErrorKind.UNSUPPORTED: (
        "Biometría no soportada. Usa Safari en iOS 14+ o Chrome/Edge en escritorio."
    ),
    CeremonyErrorKind.CREDENTIAL_CONFLICT: (
        "Ya existe una credencial. Desactívala primero o usa otro dispositivo."
    ),
    CeremonyErrorKind.USER_CANCELLED: "Operación cancelada. Intenta de nuevo.",
    CeremonyErrorKind.SECURITY_CONTEXT_INVALID: (
        "Error de seguridad. Verifica que estés usando HTTPS o localhost."
    ),
    CeremonyErrorKind.NOT_AUTHENTICATED: "Usuario no autenticado",
    CeremonyErrorKind.CEREMONY_IN_PROGRESS: "Ya hay una operación biométrica en curso.",
}

# Only the kinds whose wording differs from registration
AUTHENTICATION_MESSAGES: dict[CeremonyErrorKind, str] = {
    CeremonyErrorKind.PERMISSION_DENIED: "Autenticación cancelada o denegada",
    CeremonyErrorKind.CREDENTIAL_CONFLICT: "No se encontró la credencial. Regístrala nuevamente.",
    CeremonyErrorKind.NO_DEVICE_CREDENTIAL: (
        "No hay credenciales biométricas guardadas. Registra primero."
    ),
}

DEFAULT_REGISTRATION_MESSAGE = "Error al registrar biometría"
DEFAULT_AUTHENTICATION_MESSAGE = "Error al autenticar"
UNREGISTER_FAILED_MESSAGE = "Error al desactivar biometría"
UNAVAILABLE_MESSAGE = "Biometría no disponible en este dispositivo"
NO_CREDENTIAL_CREATED_MESSAGE = "No se pudo crear la credencial"
NO_ASSERTION_MESSAGE = "Autenticación fallida"


def classify_error(error: Exception) -> CeremonyErrorKind:
    """Kind of a ceremony failure."""
    if isinstance(error, BridgeError):
        return error.kind
    name = getattr(error, "name", None)
    if isinstance(name, str):
        return PLATFORM_ERROR_KINDS.get(name, CeremonyErrorKind.UNKNOWN)
    return CeremonyErrorKind.UNKNOWN


def terminal_state(kind: CeremonyErrorKind) -> CeremonyState:
    return TERMINAL_STATES.get(kind, CeremonyState.FAILED)


def _detail(error: Exception) -> Optional[str]:
    message = getattr(error, "message", None) or str(error)
    return message or None


def registration_message(kind: CeremonyErrorKind, error: Optional[Exception] = None) -> str:
    """User-facing message for a failed registration."""
    if isinstance(error, BridgeError):
        return error.message
    if kind in REGISTRATION_MESSAGES:
        return REGISTRATION_MESSAGES[kind]
    return (_detail(error) if error else None) or DEFAULT_REGISTRATION_MESSAGE


def authentication_message(kind: CeremonyErrorKind, error: Optional[Exception] = None) -> str:
    """User-facing message for a failed biometric check."""
    if isinstance(error, BridgeError):
        return error.message
    if kind in AUTHENTICATION_MESSAGES:
        return AUTHENTICATION_MESSAGES[kind]
    if kind in REGISTRATION_MESSAGES:
        return REGISTRATION_MESSAGES[kind]
    return (_detail(error) if error else None) or DEFAULT_AUTHENTICATION_MESSAGE
