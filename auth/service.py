"""Authentication service - login, token refresh, confirmation and recovery flows."""

import logging
from datetime import datetime
from uuid import UUID

from auth.config import AuthConfig
from auth.codes import CodeManager
from auth.database import AuthDatabase
from auth.exceptions import (
    DeviceNotFoundError,
    EmailNotConfirmedError,
    InvalidCodeError,
    InvalidCredentialsError,
    SessionMismatchError,
    SessionNotFoundError,
    UnauthorizedError,
)
from auth.password import hash_password, verify_password
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.session import SessionRegistry
from auth.tokens import TokenService
from auth.types import CodeKind, Session, TokenPair, User, UserProfile
from clients.email_client import EmailGatewayClient, EmailGatewayError

logger = logging.getLogger(__name__)


class AuthService:
    """Orchestrates the credential and session lifecycle.

    Each public method is one use case. Guards have already run by the time
    the token-bound ones (refresh, logout, device management) are called;
    the context they produced is passed in explicitly.

    Password recovery and confirmation resending behave identically whether
    or not the email belongs to an account.
    """

    def __init__(
        self,
        config: AuthConfig,
        auth_db: AuthDatabase,
        token_service: TokenService,
        session_registry: SessionRegistry,
        code_manager: CodeManager,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._auth_db = auth_db
        self._tokens = token_service
        self._sessions = session_registry
        self._codes = code_manager
        self._email_client = email_client
        self._security_logger = security_logger

    def _issue_tokens(self, user: User, session: Session) -> TokenPair:
        return TokenPair(
            access_token=self._tokens.issue_access_token(user.id, user.login),
            refresh_token=self._tokens.issue_refresh_token(
                user.id, session.device_id, session.issued_at
            ),
            session=session,
        )

    def _send_confirmation(self, user: User) -> None:
        code = self._codes.issue(user.id, CodeKind.CONFIRMATION)
        try:
            self._email_client.send_confirmation_code(
                email=user.email,
                code=code.value,
                app_url=self._config.app_base_url,
            )
        except EmailGatewayError:
            # The user can ask for a new code; the response must not differ.
            logger.exception(f"Confirmation email to user {user.id} failed")
            return

        self._security_logger.log(
            SecurityEvent.CONFIRMATION_CODE_SENT,
            email=user.email,
            user_id=user.id,
        )

    def register(
        self,
        login: str,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> User:
        """Create an unconfirmed account and mail its confirmation code.

        Raises:
            UserAlreadyExistsError: Login or email already taken.
        """
        user = self._auth_db.create_user(
            login=login,
            email=email.lower().strip(),
            password_hash=hash_password(password, rounds=self._config.bcrypt_rounds),
        )

        self._security_logger.log(
            SecurityEvent.USER_REGISTERED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        self._send_confirmation(user)
        return user

    def login(
        self,
        login_or_email: str,
        password: str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> TokenPair:
        """Check credentials and open a session for a new device.

        Raises:
            InvalidCredentialsError: Unknown login or wrong password.
            EmailNotConfirmedError: Password matched but email is unconfirmed.
        """
        user = self._auth_db.get_user_by_login_or_email(login_or_email.strip())

        # verify_password spends a bcrypt check even when user is None
        if not verify_password(
            password,
            user.password_hash if user else None,
            rounds=self._config.bcrypt_rounds,
        ):
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                user_id=user.id if user else None,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "bad_credentials" if user else "user_not_found"},
            )
            raise InvalidCredentialsError("Invalid login or password")

        if not user.is_email_confirmed:
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "email_not_confirmed"},
            )
            raise EmailNotConfirmedError("Email is not confirmed")

        session = self._sessions.create_session(user.id, ip_address, user_agent)

        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"device_id": str(session.device_id)},
        )

        return self._issue_tokens(user, session)

    def refresh(
        self,
        user_id: UUID,
        device_id: UUID,
        issued_at: datetime,
        ip_address: str | None,
        user_agent: str | None,
    ) -> TokenPair:
        """Rotate the device session and issue a new token pair.

        The presented refresh token stops working once this returns.

        Raises:
            UnauthorizedError: Session gone, rotated concurrently, or user deleted.
        """
        user = self._auth_db.get_user_by_id(user_id)
        if user is None:
            self._sessions.revoke(user_id, device_id)
            raise UnauthorizedError("Authentication required")

        try:
            session = self._sessions.rotate_session(
                user_id, device_id, issued_at, ip_address, user_agent
            )
        except (SessionNotFoundError, SessionMismatchError) as e:
            self._security_logger.log(
                SecurityEvent.REFRESH_REJECTED,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"device_id": str(device_id), "reason": type(e).__name__},
            )
            raise UnauthorizedError("Authentication required")

        self._security_logger.log(
            SecurityEvent.TOKEN_REFRESHED,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"device_id": str(device_id)},
        )

        return self._issue_tokens(user, session)

    def logout(self, user_id: UUID, device_id: UUID, ip_address: str | None) -> None:
        """End the device session the refresh token belongs to."""
        self._sessions.revoke(user_id, device_id)

        self._security_logger.log(
            SecurityEvent.SESSION_REVOKED,
            user_id=user_id,
            ip_address=ip_address,
            details={"device_id": str(device_id), "reason": "logout"},
        )

    def confirm_email(self, code: str) -> None:
        """Consume a confirmation code and mark the account confirmed.

        Raises:
            InvalidCodeError: Code unknown/expired/used, or account already confirmed.
        """
        try:
            user_id = self._codes.consume(code, CodeKind.CONFIRMATION)
        except InvalidCodeError:
            self._security_logger.log(
                SecurityEvent.CODE_REJECTED,
                details={"kind": CodeKind.CONFIRMATION.value},
            )
            raise

        if not self._auth_db.confirm_email(user_id):
            raise InvalidCodeError("Email is already confirmed")

        self._security_logger.log(SecurityEvent.EMAIL_CONFIRMED, user_id=user_id)

    def resend_confirmation(self, email: str) -> None:
        """Mail a fresh confirmation code if the account exists and is unconfirmed.

        Always returns normally so the caller can't probe for accounts.
        """
        user = self._auth_db.get_user_by_email(email.lower().strip())
        if user is None or user.is_email_confirmed:
            logger.info("Confirmation resend skipped: no unconfirmed account for email")
            return

        self._send_confirmation(user)

    def request_password_recovery(self, email: str, ip_address: str | None = None) -> None:
        """Mail a recovery code if the email belongs to an account.

        Always returns normally so the caller can't probe for accounts.
        """
        user = self._auth_db.get_user_by_email(email.lower().strip())
        if user is None:
            logger.info("Password recovery requested for unknown email")
            return

        code = self._codes.issue(user.id, CodeKind.RECOVERY)
        try:
            self._email_client.send_recovery_code(
                email=user.email,
                code=code.value,
                app_url=self._config.app_base_url,
            )
        except EmailGatewayError:
            logger.exception(f"Recovery email to user {user.id} failed")
            return

        self._security_logger.log(
            SecurityEvent.RECOVERY_CODE_SENT,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
        )

    def set_new_password(
        self,
        recovery_code: str,
        new_password: str,
        ip_address: str | None = None,
    ) -> None:
        """Consume a recovery code, store the new password, sign out everywhere.

        The recovery guard only peeks at the code; consumption here is the
        single atomic step, so one code changes the password at most once.

        Raises:
            InvalidCodeError: Code unknown/expired/used, or lost a race.
        """
        try:
            user_id = self._codes.consume(recovery_code, CodeKind.RECOVERY)
        except InvalidCodeError:
            self._security_logger.log(
                SecurityEvent.CODE_REJECTED,
                ip_address=ip_address,
                details={"kind": CodeKind.RECOVERY.value},
            )
            raise

        password_hash = hash_password(new_password, rounds=self._config.bcrypt_rounds)
        if not self._auth_db.update_password_hash(user_id, password_hash):
            raise InvalidCodeError("Account no longer exists")

        revoked = self._sessions.revoke_all(user_id)

        self._security_logger.log(
            SecurityEvent.PASSWORD_CHANGED,
            user_id=user_id,
            ip_address=ip_address,
            details={"sessions_revoked": revoked},
        )

    def get_me(self, user_id: UUID) -> UserProfile:
        """Profile of the access token's owner.

        Raises:
            UnauthorizedError: Account was deleted after the token was issued.
        """
        user = self._auth_db.get_user_by_id(user_id)
        if user is None:
            raise UnauthorizedError("Authentication required")
        return UserProfile(user_id=user.id, login=user.login, email=user.email)

    def list_devices(self, user_id: UUID) -> list[Session]:
        """All live device sessions of the user."""
        return self._sessions.list_sessions(user_id)

    def revoke_device(self, user_id: UUID, device_id: UUID, ip_address: str | None = None) -> None:
        """Sign out one of the caller's own devices.

        Raises:
            DeviceNotFoundError: The caller has no such device.
        """
        if not self._sessions.revoke(user_id, device_id):
            raise DeviceNotFoundError("Device not found")

        self._security_logger.log(
            SecurityEvent.SESSION_REVOKED,
            user_id=user_id,
            ip_address=ip_address,
            details={"device_id": str(device_id), "reason": "device_terminated"},
        )

    def revoke_other_devices(
        self,
        user_id: UUID,
        current_device_id: UUID,
        ip_address: str | None = None,
    ) -> int:
        """Sign out every device except the one making the request."""
        revoked = self._sessions.revoke_all(user_id, except_device_id=current_device_id)

        self._security_logger.log(
            SecurityEvent.SESSIONS_REVOKED,
            user_id=user_id,
            ip_address=ip_address,
            details={"kept_device_id": str(current_device_id), "count": revoked},
        )
        return revoked
