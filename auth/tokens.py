"""
Access and refresh token issuance and verification.

Tokens are HMAC-signed JWTs. Access and refresh tokens use different
secrets and carry a "type" claim, so neither can stand in for the other.
The service keeps no state: output depends only on config, claims and the
clock.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID, uuid4

import jwt
from pydantic import ValidationError

from auth.config import AuthConfig
from auth.exceptions import InvalidTokenError
from auth.types import AccessClaims, RefreshClaims
from utils.timezone import now_utc, parse_iso

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenService:
    """Creates and verifies signed access/refresh tokens."""

    def __init__(self, config: AuthConfig, clock: Callable[[], datetime] = now_utc):
        self._config = config
        self._clock = clock
        self._access_secret = config.access_token_secret.get_secret_value()
        self._refresh_secret = config.refresh_token_secret.get_secret_value()

    @property
    def access_secret(self) -> str:
        return self._access_secret

    @property
    def refresh_secret(self) -> str:
        return self._refresh_secret

    def _encode(self, payload: dict[str, Any], secret: str, lifetime: timedelta) -> str:
        now = self._clock()
        # jti keeps two tokens minted within the same second distinct
        payload = {**payload, "jti": str(uuid4()), "iat": now, "exp": now + lifetime}
        return jwt.encode(payload, secret, algorithm=self._config.jwt_algorithm)

    def issue_access_token(self, user_id: UUID, login: str) -> str:
        """Short-lived bearer token for API calls."""
        return self._encode(
            {"sub": str(user_id), "login": login, "type": ACCESS_TOKEN_TYPE},
            self._access_secret,
            timedelta(minutes=self._config.access_token_expiry_minutes),
        )

    def issue_refresh_token(self, user_id: UUID, device_id: UUID, issued_at: datetime) -> str:
        """
        Long-lived token bound to one device session generation.

        issued_at is carried at microsecond precision (the JWT "iat" claim is
        whole seconds) and must equal the session's issued_at to be accepted.
        """
        return self._encode(
            {
                "sub": str(user_id),
                "device_id": str(device_id),
                "issued_at": issued_at.isoformat(),
                "type": REFRESH_TOKEN_TYPE,
            },
            self._refresh_secret,
            timedelta(days=self._config.refresh_token_expiry_days),
        )

    def verify(self, token: str, secret: str) -> dict[str, Any]:
        """
        Check signature and expiry and return the raw claims.

        Raises:
            InvalidTokenError: Bad signature, malformed token, or expired.
        """
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self._config.jwt_algorithm],
                options={"require": ["sub", "type", "iat", "exp"]},
            )
        except jwt.InvalidTokenError as e:
            # ExpiredSignatureError is a subclass; callers see one error either way
            logger.debug(f"Token rejected: {type(e).__name__}")
            raise InvalidTokenError("Invalid or expired token")

    def verify_access(self, token: str) -> AccessClaims:
        """
        Verify an access token.

        Raises:
            InvalidTokenError: On any failure, including a refresh token passed in.
        """
        claims = self.verify(token, self._access_secret)
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise InvalidTokenError("Invalid or expired token")
        try:
            return AccessClaims(user_id=claims["sub"], login=claims["login"])
        except (KeyError, ValidationError):
            raise InvalidTokenError("Invalid or expired token")

    def verify_refresh(self, token: str) -> RefreshClaims:
        """
        Verify a refresh token's signature and shape.

        Session binding is checked separately by the session registry.

        Raises:
            InvalidTokenError: On any failure, including an access token passed in.
        """
        claims = self.verify(token, self._refresh_secret)
        if claims.get("type") != REFRESH_TOKEN_TYPE:
            raise InvalidTokenError("Invalid or expired token")
        try:
            return RefreshClaims(
                user_id=claims["sub"],
                device_id=claims["device_id"],
                issued_at=parse_iso(claims["issued_at"]),
            )
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError("Invalid or expired token")
