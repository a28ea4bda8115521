"""Typed failures raised by the token, OTP and authentication services.

Routers translate these into HTTP responses; nothing in here knows about
status codes. Every subclass of ``AuthenticationFailed`` maps to the same
generic 401 so callers cannot tell *why* a secret was rejected.
"""


class AuthError(Exception):
    code = "auth_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)


class AuthenticationFailed(AuthError):
    """Authentication failed."""

    code = "unauthenticated"


class InvalidCredentials(AuthenticationFailed):
    """Invalid credentials."""

    code = "invalid_credentials"


class UserInactive(AuthenticationFailed):
    """User account is inactive."""

    code = "user_inactive"


class InvalidAccessToken(AuthenticationFailed):
    """Invalid access token."""

    code = "invalid_access_token"


class InvalidRefreshToken(AuthenticationFailed):
    """Invalid refresh token."""

    code = "invalid_refresh_token"


class RefreshTokenExpired(AuthenticationFailed):
    """Refresh token expired."""

    code = "refresh_token_expired"


class NoActiveCode(AuthenticationFailed):
    """No active one-time code."""

    code = "no_active_code"


class CodeMismatch(AuthenticationFailed):
    """One-time code does not match."""

    code = "code_mismatch"


class InvalidClient(AuthenticationFailed):
    """Invalid or inactive client."""

    code = "invalid_client"


class ClientAssociationRequired(AuthError):
    """User must be associated with a client to login."""

    code = "CLIENT_REQUIRED"


class CurrentPasswordIncorrect(AuthError):
    """Current password is incorrect."""

    code = "current_password_incorrect"
