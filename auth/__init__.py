"""Credential and session lifecycle: tokens, device sessions, codes, guards."""

from auth.exceptions import (
    AuthError,
    UnauthorizedError,
    InvalidTokenError,
    InvalidCredentialsError,
    EmailNotConfirmedError,
    SessionNotFoundError,
    SessionMismatchError,
    InvalidCodeError,
    DeviceNotFoundError,
    UserAlreadyExistsError,
)
from auth.types import (
    User,
    Session,
    Code,
    CodeKind,
    AccessClaims,
    RefreshClaims,
    TokenPair,
    UserProfile,
)
from auth.config import AuthConfig, load_auth_config
from auth.database import AuthDatabase
from auth.password import hash_password, verify_password
from auth.tokens import TokenService
from auth.session import SessionRegistry
from auth.codes import CodeManager
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.guards import (
    AccessGuard,
    OptionalAccessGuard,
    RefreshGuard,
    RecoveryCodeGuard,
    AccessContext,
    RefreshContext,
    RecoveryContext,
)
from auth.service import AuthService
from auth.api import Guards, create_auth_router, create_devices_router
