"""Request guards - token and code checks that run before a route handler.

Each guard is a callable instance used as a FastAPI dependency and listed
explicitly on the routes it protects. A guard either returns the context
the handler needs or raises, in which case the handler never runs. Token
and session failures all surface as the same UnauthorizedError; the
specific cause only goes to the log.
"""

import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from starlette.requests import Request

from auth.codes import CodeManager
from auth.exceptions import (
    InvalidCodeError,
    InvalidTokenError,
    SessionMismatchError,
    SessionNotFoundError,
    UnauthorizedError,
)
from auth.session import SessionRegistry
from auth.tokens import TokenService
from auth.types import CodeKind

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@dataclass(frozen=True)
class AccessContext:
    """Identity proven by an access token."""

    user_id: UUID
    login: str


@dataclass(frozen=True)
class RefreshContext:
    """Device session proven by a current refresh token."""

    user_id: UUID
    device_id: UUID
    issued_at: datetime
    ip: str | None
    user_agent: str | None


@dataclass(frozen=True)
class RecoveryContext:
    """Outstanding recovery code and the account it belongs to."""

    user_id: UUID
    recovery_code: str


class AccessGuard:
    """Requires a valid bearer access token."""

    def __init__(self, token_service: TokenService):
        self._tokens = token_service

    def __call__(self, request: Request) -> AccessContext:
        token = _bearer_token(request)
        if token is None:
            raise UnauthorizedError("Authentication required")

        try:
            claims = self._tokens.verify_access(token)
        except InvalidTokenError:
            raise UnauthorizedError("Authentication required")

        request.state.user_id = claims.user_id
        return AccessContext(user_id=claims.user_id, login=claims.login)


class OptionalAccessGuard(AccessGuard):
    """Like AccessGuard, but an absent or invalid token yields None."""

    def __call__(self, request: Request) -> AccessContext | None:
        try:
            return super().__call__(request)
        except UnauthorizedError:
            request.state.user_id = None
            return None


class RefreshGuard:
    """Requires the refresh cookie of a live, current device session."""

    def __init__(
        self,
        token_service: TokenService,
        session_registry: SessionRegistry,
        cookie_name: str = "refreshToken",
    ):
        self._tokens = token_service
        self._sessions = session_registry
        self._cookie_name = cookie_name

    def __call__(self, request: Request) -> RefreshContext:
        token = request.cookies.get(self._cookie_name)
        if not token:
            raise UnauthorizedError("Authentication required")

        try:
            claims = self._tokens.verify_refresh(token)
            self._sessions.validate(claims.user_id, claims.device_id, claims.issued_at)
        except (InvalidTokenError, SessionNotFoundError, SessionMismatchError) as e:
            logger.info(f"Refresh token rejected: {type(e).__name__}")
            raise UnauthorizedError("Authentication required")

        request.state.user_id = claims.user_id
        return RefreshContext(
            user_id=claims.user_id,
            device_id=claims.device_id,
            issued_at=claims.issued_at,
            ip=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )


class RecoveryCodeGuard:
    """Requires an outstanding recovery code in the JSON body.

    Only checks the code. The password-change use case consumes it.
    """

    def __init__(self, code_manager: CodeManager):
        self._codes = code_manager

    async def __call__(self, request: Request) -> RecoveryContext:
        try:
            body = await request.json()
        except ValueError:
            raise InvalidCodeError("Recovery code is required")

        code = body.get("recoveryCode") if isinstance(body, dict) else None
        if not isinstance(code, str) or not code:
            raise InvalidCodeError("Recovery code is required")

        user_id = self._codes.peek(code, CodeKind.RECOVERY)
        return RecoveryContext(user_id=user_id, recovery_code=code)
