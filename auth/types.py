"""Pydantic models for auth domain."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field


class User(BaseModel):
    """A registered user of the system."""

    id: UUID
    login: str
    email: EmailStr
    password_hash: str = Field(..., repr=False)
    is_email_confirmed: bool  # Required - fail closed, no default
    created_at: datetime

    model_config = {"from_attributes": True}


class Session(BaseModel):
    """One signed-in device. Keyed by (user_id, device_id)."""

    user_id: UUID
    device_id: UUID
    issued_at: datetime = Field(..., description="Current refresh token generation")
    expires_at: datetime
    ip: str | None = None
    user_agent: str | None = None


class CodeKind(str, Enum):
    """Purpose of a single-use code."""

    CONFIRMATION = "confirmation"
    RECOVERY = "recovery"


class Code(BaseModel):
    """A single-use, time-boxed confirmation or recovery code."""

    value: str = Field(..., description="URL-safe opaque value")
    user_id: UUID
    kind: CodeKind
    created_at: datetime
    expires_at: datetime
    consumed: bool  # Required - fail closed, no default


class AccessClaims(BaseModel):
    """Verified access token payload."""

    user_id: UUID
    login: str


class RefreshClaims(BaseModel):
    """Verified refresh token payload."""

    user_id: UUID
    device_id: UUID
    issued_at: datetime


@dataclass(frozen=True)
class TokenPair:
    """Access token plus the refresh token bound to a device session."""

    access_token: str
    refresh_token: str
    session: Session


@dataclass(frozen=True)
class UserProfile:
    """Projection returned by /auth/me."""

    user_id: UUID
    login: str
    email: str


# Request bodies. The wire format is camelCase.


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(_CamelModel):
    # Clients send whichever identifier the user typed
    login_or_email: str = Field(
        ...,
        validation_alias=AliasChoices("loginOrEmail", "login", "email"),
        min_length=1,
    )
    password: str = Field(..., min_length=1)


class RegistrationRequest(_CamelModel):
    login: str = Field(..., min_length=3, max_length=10, pattern=r"^[a-zA-Z0-9_-]*$")
    password: str = Field(..., min_length=6, max_length=20)
    email: EmailStr


class EmailRequest(_CamelModel):
    email: EmailStr


class ConfirmationRequest(_CamelModel):
    code: str = Field(..., min_length=1)


class NewPasswordRequest(_CamelModel):
    new_password: str = Field(..., alias="newPassword", min_length=6, max_length=20)
    recovery_code: str = Field(..., alias="recoveryCode", min_length=1)
