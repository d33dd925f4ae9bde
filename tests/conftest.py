"""Shared test fixtures for the auth service test suite.

Valkey is replaced by fakeredis (same wire semantics, including WATCH/MULTI);
the PostgreSQL-backed credential store is replaced by an in-memory store
with the same interface as AuthDatabase.
"""

import threading
from unittest.mock import Mock, patch
from uuid import UUID, uuid4

import fakeredis
import pytest
from starlette.testclient import TestClient

from api.app import build_guards, create_app
from auth.codes import CodeManager
from auth.config import AuthConfig
from auth.exceptions import UserAlreadyExistsError
from auth.password import hash_password
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionRegistry
from auth.tokens import TokenService
from auth.types import User
from clients.email_client import EmailGatewayClient
from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc


# =============================================================================
# TEST CONSTANTS
# =============================================================================

TEST_ACCESS_SECRET = "test-access-secret-0123456789abcdefghij"
TEST_REFRESH_SECRET = "test-refresh-secret-0123456789abcdefghij"

# Primary test user - use for single-user tests
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_LOGIN = "alice"
TEST_USER_EMAIL = "alice@example.com"
TEST_USER_PASSWORD = "Secret123!"

# Secondary test user - use for isolation tests
TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")


# =============================================================================
# IN-MEMORY CREDENTIAL STORE
# =============================================================================


class InMemoryAuthDatabase:
    """Dict-backed stand-in for AuthDatabase."""

    def __init__(self):
        self.users: dict[UUID, User] = {}
        self._lock = threading.Lock()

    def add_user(
        self,
        login: str,
        email: str,
        password: str,
        confirmed: bool = True,
        user_id: UUID | None = None,
    ) -> User:
        user = User(
            id=user_id or uuid4(),
            login=login,
            email=email.lower(),
            password_hash=hash_password(password, rounds=4),
            is_email_confirmed=confirmed,
            created_at=now_utc(),
        )
        self.users[user.id] = user
        return user

    def get_user_by_id(self, user_id: UUID) -> User | None:
        return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return next((u for u in self.users.values() if u.email == email.lower()), None)

    def get_user_by_login(self, login: str) -> User | None:
        return next((u for u in self.users.values() if u.login == login), None)

    def get_user_by_login_or_email(self, login_or_email: str) -> User | None:
        return self.get_user_by_login(login_or_email) or self.get_user_by_email(login_or_email)

    def create_user(self, login: str, email: str, password_hash: str) -> User:
        with self._lock:
            if self.get_user_by_login(login) is not None:
                raise UserAlreadyExistsError("login")
            if self.get_user_by_email(email) is not None:
                raise UserAlreadyExistsError("email")
            user = User(
                id=uuid4(),
                login=login,
                email=email.lower(),
                password_hash=password_hash,
                is_email_confirmed=False,
                created_at=now_utc(),
            )
            self.users[user.id] = user
            return user

    def confirm_email(self, user_id: UUID) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if user is None or user.is_email_confirmed:
                return False
            self.users[user_id] = user.model_copy(update={"is_email_confirmed": True})
            return True

    def update_password_hash(self, user_id: UUID, password_hash: str) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return False
            self.users[user_id] = user.model_copy(update={"password_hash": password_hash})
            return True


# =============================================================================
# CONFIG
# =============================================================================


@pytest.fixture
def config() -> AuthConfig:
    """Test config: fast bcrypt, default lifetimes."""
    return AuthConfig(
        access_token_secret=TEST_ACCESS_SECRET,
        refresh_token_secret=TEST_REFRESH_SECRET,
        bcrypt_rounds=4,
        app_base_url="https://test.example.com",
    )


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def test_user_b_id() -> UUID:
    """The secondary test user's ID (for isolation tests)."""
    return TEST_USER_B_ID


# =============================================================================
# VALKEY FIXTURES
# =============================================================================


@pytest.fixture
def valkey():
    """ValkeyClient talking to a fresh in-process fake server."""
    server = fakeredis.FakeServer()

    def _from_url(url, **kwargs):
        return fakeredis.FakeRedis(server=server, **kwargs)

    with patch("clients.valkey_client.redis.from_url", _from_url):
        client = ValkeyClient("redis://valkey.test:6379/0")
    yield client
    client.close()


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def token_service(config) -> TokenService:
    return TokenService(config)


@pytest.fixture
def session_registry(valkey, config) -> SessionRegistry:
    return SessionRegistry(valkey, config)


@pytest.fixture
def code_manager(valkey, config) -> CodeManager:
    return CodeManager(valkey, config)


@pytest.fixture
def auth_db() -> InMemoryAuthDatabase:
    return InMemoryAuthDatabase()


@pytest.fixture
def mock_email_client():
    """Mock email client - no actual emails sent in tests."""
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def mock_security_logger():
    """Mock security logger - audit rows are PostgreSQL-only."""
    return Mock(spec=SecurityLogger)


@pytest.fixture
def auth_service(
    config,
    auth_db,
    token_service,
    session_registry,
    code_manager,
    mock_email_client,
    mock_security_logger,
) -> AuthService:
    return AuthService(
        config=config,
        auth_db=auth_db,
        token_service=token_service,
        session_registry=session_registry,
        code_manager=code_manager,
        email_client=mock_email_client,
        security_logger=mock_security_logger,
    )


@pytest.fixture
def alice(auth_db) -> User:
    """Confirmed primary test user."""
    return auth_db.add_user(
        TEST_USER_LOGIN,
        TEST_USER_EMAIL,
        TEST_USER_PASSWORD,
        user_id=TEST_USER_ID,
    )


# =============================================================================
# HTTP FIXTURES
# =============================================================================


@pytest.fixture
def guards(config, token_service, session_registry, code_manager):
    return build_guards(config, token_service, session_registry, code_manager)


@pytest.fixture
def app(config, auth_service, guards):
    return create_app(config, auth_service, guards)


@pytest.fixture
def client(app):
    """Test client on https so the Secure refresh cookie round-trips."""
    return TestClient(app, base_url="https://testserver")
