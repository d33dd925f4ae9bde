"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class UnauthorizedError(AuthError):
    """
    Request is not authenticated.

    Raised by guards for any token or session failure. The message is
    deliberately generic; the specific cause is only logged.
    """


class InvalidTokenError(AuthError):
    """
    Token signature, payload or expiry check failed.

    The three cases are not distinguished.
    """


class InvalidCredentialsError(AuthError):
    """
    Login or password did not match.

    Also raised for unknown logins, so callers cannot tell the two apart.
    """


class EmailNotConfirmedError(AuthError):
    """Credentials matched but the account email is not confirmed yet."""


class SessionNotFoundError(AuthError):
    """Device session is absent (logged out, revoked or expired)."""


class SessionMismatchError(AuthError):
    """
    Refresh token generation does not match the stored session.

    Signals reuse of a rotated refresh token; the device session has been
    revoked by the time this is raised.
    """


class InvalidCodeError(AuthError):
    """Confirmation/recovery code is missing, expired or already used."""


class DeviceNotFoundError(AuthError):
    """Caller has no device session with the requested id."""


class UserAlreadyExistsError(AuthError):
    """Registration collides with an existing login or email."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"User with this {field} already exists")
