"""Tests for AuthService - credential and session lifecycle orchestration."""

from unittest.mock import patch
from uuid import uuid4

import pytest

from auth.exceptions import (
    DeviceNotFoundError,
    EmailNotConfirmedError,
    InvalidCodeError,
    InvalidCredentialsError,
    UnauthorizedError,
    UserAlreadyExistsError,
)
from auth.password import verify_password
from auth.security_logger import SecurityEvent
from auth.types import CodeKind
from clients.email_client import EmailGatewayError

PASSWORD = "Secret123!"


def logged_events(mock_security_logger) -> list[SecurityEvent]:
    return [c.args[0] for c in mock_security_logger.log.call_args_list]


def mailed_code(mock_send) -> str:
    """Code value passed to the most recent email call."""
    return mock_send.call_args.kwargs["code"]


class TestRegister:
    """Account creation."""

    def test_creates_unconfirmed_user(self, auth_service, auth_db):
        user = auth_service.register("bob", "Bob@Example.com", PASSWORD)

        stored = auth_db.get_user_by_id(user.id)
        assert stored.login == "bob"
        assert stored.email == "bob@example.com"
        assert stored.is_email_confirmed is False
        assert verify_password(PASSWORD, stored.password_hash)

    def test_mails_confirmation_code(self, auth_service, mock_email_client):
        auth_service.register("bob", "bob@example.com", PASSWORD)

        mock_email_client.send_confirmation_code.assert_called_once()
        kwargs = mock_email_client.send_confirmation_code.call_args.kwargs
        assert kwargs["email"] == "bob@example.com"
        assert kwargs["app_url"] == "https://test.example.com"

    def test_duplicate_login_rejected(self, auth_service, alice):
        with pytest.raises(UserAlreadyExistsError) as exc_info:
            auth_service.register(alice.login, "other@example.com", PASSWORD)
        assert exc_info.value.field == "login"

    def test_duplicate_email_rejected(self, auth_service, alice):
        with pytest.raises(UserAlreadyExistsError) as exc_info:
            auth_service.register("other", alice.email.upper(), PASSWORD)
        assert exc_info.value.field == "email"

    def test_email_failure_does_not_fail_registration(self, auth_service, auth_db, mock_email_client):
        mock_email_client.send_confirmation_code.side_effect = EmailGatewayError("down")

        user = auth_service.register("bob", "bob@example.com", PASSWORD)

        assert auth_db.get_user_by_id(user.id) is not None

    def test_logs_registration(self, auth_service, mock_security_logger):
        auth_service.register("bob", "bob@example.com", PASSWORD, ip_address="10.0.0.1")
        assert SecurityEvent.USER_REGISTERED in logged_events(mock_security_logger)


class TestLogin:
    """Credential check and new device session."""

    def test_login_by_login(self, auth_service, token_service, alice):
        tokens = auth_service.login(alice.login, PASSWORD, "10.0.0.1", "Firefox")

        assert token_service.verify_access(tokens.access_token).user_id == alice.id
        claims = token_service.verify_refresh(tokens.refresh_token)
        assert claims.device_id == tokens.session.device_id
        assert claims.issued_at == tokens.session.issued_at

    def test_login_by_email_case_insensitive(self, auth_service, alice):
        tokens = auth_service.login("ALICE@example.com", PASSWORD, None, None)
        assert tokens.session.user_id == alice.id

    def test_each_login_is_new_device(self, auth_service, session_registry, alice):
        auth_service.login(alice.login, PASSWORD, None, None)
        auth_service.login(alice.login, PASSWORD, None, None)
        assert len(session_registry.list_sessions(alice.id)) == 2

    def test_wrong_password(self, auth_service, alice):
        with pytest.raises(InvalidCredentialsError):
            auth_service.login(alice.login, "wrong-password", None, None)

    def test_unknown_user_same_error(self, auth_service):
        with pytest.raises(InvalidCredentialsError):
            auth_service.login("nobody", PASSWORD, None, None)

    def test_unknown_user_checked_at_configured_cost(self, auth_service, config):
        with patch("auth.service.verify_password", return_value=False) as verify:
            with pytest.raises(InvalidCredentialsError):
                auth_service.login("nobody", PASSWORD, None, None)

        verify.assert_called_once_with(PASSWORD, None, rounds=config.bcrypt_rounds)

    def test_failed_login_creates_no_session(self, auth_service, session_registry, alice):
        with pytest.raises(InvalidCredentialsError):
            auth_service.login(alice.login, "wrong-password", None, None)
        assert session_registry.list_sessions(alice.id) == []

    def test_unconfirmed_email_rejected_after_password(self, auth_service, auth_db):
        auth_db.add_user("carol", "carol@example.com", PASSWORD, confirmed=False)
        with pytest.raises(EmailNotConfirmedError):
            auth_service.login("carol", PASSWORD, None, None)

    def test_unconfirmed_with_wrong_password_is_bad_credentials(self, auth_service, auth_db):
        """Confirmation status is not disclosed without the password."""
        auth_db.add_user("carol", "carol@example.com", PASSWORD, confirmed=False)
        with pytest.raises(InvalidCredentialsError):
            auth_service.login("carol", "wrong-password", None, None)

    def test_logs_outcomes(self, auth_service, mock_security_logger, alice):
        auth_service.login(alice.login, PASSWORD, None, None)
        with pytest.raises(InvalidCredentialsError):
            auth_service.login(alice.login, "wrong-password", None, None)

        assert logged_events(mock_security_logger) == [
            SecurityEvent.LOGIN_SUCCEEDED,
            SecurityEvent.LOGIN_FAILED,
        ]


class TestRefresh:
    """Rotation of a device session."""

    def test_rotates_and_issues_new_pair(self, auth_service, token_service, alice):
        first = auth_service.login(alice.login, PASSWORD, None, None)
        s = first.session

        second = auth_service.refresh(alice.id, s.device_id, s.issued_at, "10.0.0.2", "Chrome")

        assert second.session.device_id == s.device_id
        assert second.session.issued_at > s.issued_at
        assert second.refresh_token != first.refresh_token
        assert token_service.verify_refresh(second.refresh_token).issued_at == second.session.issued_at

    def test_old_generation_rejected(self, auth_service, alice):
        first = auth_service.login(alice.login, PASSWORD, None, None)
        s = first.session
        auth_service.refresh(alice.id, s.device_id, s.issued_at, None, None)

        with pytest.raises(UnauthorizedError):
            auth_service.refresh(alice.id, s.device_id, s.issued_at, None, None)

    def test_reuse_revokes_device(self, auth_service, session_registry, alice):
        first = auth_service.login(alice.login, PASSWORD, None, None)
        s = first.session
        auth_service.refresh(alice.id, s.device_id, s.issued_at, None, None)

        with pytest.raises(UnauthorizedError):
            auth_service.refresh(alice.id, s.device_id, s.issued_at, None, None)

        assert session_registry.get_session(alice.id, s.device_id) is None

    def test_deleted_user_rejected(self, auth_service, auth_db, session_registry, alice):
        first = auth_service.login(alice.login, PASSWORD, None, None)
        del auth_db.users[alice.id]

        with pytest.raises(UnauthorizedError):
            auth_service.refresh(alice.id, first.session.device_id, first.session.issued_at, None, None)

        assert session_registry.get_session(alice.id, first.session.device_id) is None

    def test_logs_rejection(self, auth_service, mock_security_logger, alice):
        first = auth_service.login(alice.login, PASSWORD, None, None)
        auth_service.logout(alice.id, first.session.device_id, None)

        with pytest.raises(UnauthorizedError):
            auth_service.refresh(alice.id, first.session.device_id, first.session.issued_at, None, None)

        assert logged_events(mock_security_logger)[-1] == SecurityEvent.REFRESH_REJECTED


class TestLogout:
    """Ending one device session."""

    def test_logout_revokes_only_that_device(self, auth_service, session_registry, alice):
        a = auth_service.login(alice.login, PASSWORD, None, None)
        b = auth_service.login(alice.login, PASSWORD, None, None)

        auth_service.logout(alice.id, a.session.device_id, None)

        assert session_registry.get_session(alice.id, a.session.device_id) is None
        assert session_registry.get_session(alice.id, b.session.device_id) is not None

    def test_logout_twice_is_safe(self, auth_service, alice):
        a = auth_service.login(alice.login, PASSWORD, None, None)
        auth_service.logout(alice.id, a.session.device_id, None)
        auth_service.logout(alice.id, a.session.device_id, None)


class TestConfirmEmail:
    """Confirmation code consumption."""

    def test_confirms_account(self, auth_service, auth_db, mock_email_client):
        user = auth_service.register("bob", "bob@example.com", PASSWORD)
        code = mailed_code(mock_email_client.send_confirmation_code)

        auth_service.confirm_email(code)

        assert auth_db.get_user_by_id(user.id).is_email_confirmed is True

    def test_code_single_use(self, auth_service, mock_email_client):
        auth_service.register("bob", "bob@example.com", PASSWORD)
        code = mailed_code(mock_email_client.send_confirmation_code)
        auth_service.confirm_email(code)

        with pytest.raises(InvalidCodeError):
            auth_service.confirm_email(code)

    def test_unknown_code(self, auth_service, mock_security_logger):
        with pytest.raises(InvalidCodeError):
            auth_service.confirm_email("bogus")
        assert logged_events(mock_security_logger) == [SecurityEvent.CODE_REJECTED]

    def test_recovery_code_cannot_confirm(self, auth_service, code_manager, auth_db):
        user = auth_db.add_user("carol", "carol@example.com", PASSWORD, confirmed=False)
        code = code_manager.issue(user.id, CodeKind.RECOVERY)

        with pytest.raises(InvalidCodeError):
            auth_service.confirm_email(code.value)

    def test_already_confirmed_rejected(self, auth_service, code_manager, alice):
        code = code_manager.issue(alice.id, CodeKind.CONFIRMATION)
        with pytest.raises(InvalidCodeError):
            auth_service.confirm_email(code.value)

    def test_login_works_after_confirmation(self, auth_service, mock_email_client):
        auth_service.register("bob", "bob@example.com", PASSWORD)
        auth_service.confirm_email(mailed_code(mock_email_client.send_confirmation_code))

        tokens = auth_service.login("bob", PASSWORD, None, None)
        assert tokens.access_token


class TestResendConfirmation:
    """Fresh confirmation codes."""

    def test_resend_supersedes_old_code(self, auth_service, mock_email_client):
        auth_service.register("bob", "bob@example.com", PASSWORD)
        old = mailed_code(mock_email_client.send_confirmation_code)

        auth_service.resend_confirmation("bob@example.com")
        new = mailed_code(mock_email_client.send_confirmation_code)

        assert new != old
        with pytest.raises(InvalidCodeError):
            auth_service.confirm_email(old)
        auth_service.confirm_email(new)

    def test_unknown_email_is_silent(self, auth_service, mock_email_client):
        auth_service.resend_confirmation("nobody@example.com")
        mock_email_client.send_confirmation_code.assert_not_called()

    def test_confirmed_account_is_silent(self, auth_service, mock_email_client, alice):
        auth_service.resend_confirmation(alice.email)
        mock_email_client.send_confirmation_code.assert_not_called()


class TestPasswordRecovery:
    """Recovery code issuance and password change."""

    def test_mails_recovery_code(self, auth_service, mock_email_client, alice):
        auth_service.request_password_recovery(alice.email)

        mock_email_client.send_recovery_code.assert_called_once()
        assert mock_email_client.send_recovery_code.call_args.kwargs["email"] == alice.email

    def test_unknown_email_is_silent(self, auth_service, mock_email_client, mock_security_logger):
        auth_service.request_password_recovery("nobody@example.com")

        mock_email_client.send_recovery_code.assert_not_called()
        mock_security_logger.log.assert_not_called()

    def test_email_failure_is_silent(self, auth_service, mock_email_client, alice):
        mock_email_client.send_recovery_code.side_effect = EmailGatewayError("down")
        auth_service.request_password_recovery(alice.email)

    def test_set_new_password(self, auth_service, auth_db, mock_email_client, alice):
        auth_service.request_password_recovery(alice.email)
        code = mailed_code(mock_email_client.send_recovery_code)

        auth_service.set_new_password(code, "NewSecret1")

        stored = auth_db.get_user_by_id(alice.id)
        assert verify_password("NewSecret1", stored.password_hash)
        assert not verify_password(PASSWORD, stored.password_hash)

    def test_new_password_revokes_all_sessions(
        self, auth_service, session_registry, mock_email_client, alice
    ):
        auth_service.login(alice.login, PASSWORD, None, None)
        auth_service.login(alice.login, PASSWORD, None, None)
        auth_service.request_password_recovery(alice.email)

        auth_service.set_new_password(mailed_code(mock_email_client.send_recovery_code), "NewSecret1")

        assert session_registry.list_sessions(alice.id) == []

    def test_recovery_code_single_use(self, auth_service, mock_email_client, alice):
        auth_service.request_password_recovery(alice.email)
        code = mailed_code(mock_email_client.send_recovery_code)
        auth_service.set_new_password(code, "NewSecret1")

        with pytest.raises(InvalidCodeError):
            auth_service.set_new_password(code, "Another1")

    def test_confirmation_code_cannot_reset(self, auth_service, code_manager, alice):
        code = code_manager.issue(alice.id, CodeKind.CONFIRMATION)
        with pytest.raises(InvalidCodeError):
            auth_service.set_new_password(code.value, "NewSecret1")


class TestProfileAndDevices:
    """Profile lookup and device management."""

    def test_get_me(self, auth_service, alice):
        profile = auth_service.get_me(alice.id)
        assert (profile.user_id, profile.login, profile.email) == (alice.id, "alice", "alice@example.com")

    def test_get_me_deleted_user(self, auth_service):
        with pytest.raises(UnauthorizedError):
            auth_service.get_me(uuid4())

    def test_list_devices(self, auth_service, alice):
        a = auth_service.login(alice.login, PASSWORD, "10.0.0.1", "Firefox")
        devices = auth_service.list_devices(alice.id)
        assert [d.device_id for d in devices] == [a.session.device_id]

    def test_revoke_device(self, auth_service, alice):
        a = auth_service.login(alice.login, PASSWORD, None, None)
        auth_service.revoke_device(alice.id, a.session.device_id)
        assert auth_service.list_devices(alice.id) == []

    def test_revoke_unknown_device(self, auth_service, alice):
        with pytest.raises(DeviceNotFoundError):
            auth_service.revoke_device(alice.id, uuid4())

    def test_revoke_other_users_device(self, auth_service, auth_db, alice):
        """A device id belonging to someone else is simply not found."""
        bob = auth_db.add_user("bob", "bob@example.com", PASSWORD)
        bob_tokens = auth_service.login("bob", PASSWORD, None, None)

        with pytest.raises(DeviceNotFoundError):
            auth_service.revoke_device(alice.id, bob_tokens.session.device_id)

        assert len(auth_service.list_devices(bob.id)) == 1

    def test_revoke_other_devices(self, auth_service, alice):
        current = auth_service.login(alice.login, PASSWORD, None, None)
        auth_service.login(alice.login, PASSWORD, None, None)
        auth_service.login(alice.login, PASSWORD, None, None)

        assert auth_service.revoke_other_devices(alice.id, current.session.device_id) == 2
        assert [d.device_id for d in auth_service.list_devices(alice.id)] == [current.session.device_id]
