"""Credential store: user identity, password hash, confirmation status.

Backed by the users table:

    id                  uuid primary key default gen_random_uuid()
    login               text not null unique
    email               text not null unique   -- stored lowercased
    password_hash       text not null
    is_email_confirmed  boolean not null default false
    created_at          timestamptz not null default now()
"""

from uuid import UUID

import psycopg2.errors

from clients.postgres_client import PostgresClient
from auth.exceptions import UserAlreadyExistsError
from auth.types import User

_USER_COLUMNS = "id, login, email, password_hash, is_email_confirmed, created_at"


class AuthDatabase:
    """Database operations for authentication."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    @staticmethod
    def _to_user(row: dict | None) -> User | None:
        if row is None:
            return None
        return User(
            id=UUID(row["id"]) if isinstance(row["id"], str) else row["id"],
            login=row["login"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_email_confirmed=row["is_email_confirmed"],
            created_at=row["created_at"],
        )

    def get_user_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        return self._to_user(self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        ))

    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        return self._to_user(self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
            (email,),
        ))

    def get_user_by_login(self, login: str) -> User | None:
        """Find user by login (exact match)."""
        return self._to_user(self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE login = %s",
            (login,),
        ))

    def get_user_by_login_or_email(self, login_or_email: str) -> User | None:
        """Find user whose login or email matches."""
        return self._to_user(self._db.execute_single(
            f"""SELECT {_USER_COLUMNS} FROM users
                WHERE login = %s OR email = lower(%s)
                LIMIT 1""",
            (login_or_email, login_or_email),
        ))

    def create_user(self, login: str, email: str, password_hash: str) -> User:
        """
        Create an unconfirmed user.

        Raises:
            UserAlreadyExistsError: login or email already taken.
        """
        if self.get_user_by_login(login) is not None:
            raise UserAlreadyExistsError("login")
        if self.get_user_by_email(email) is not None:
            raise UserAlreadyExistsError("email")

        try:
            rows = self._db.execute_returning(
                f"""INSERT INTO users (login, email, password_hash, is_email_confirmed)
                    VALUES (%s, lower(%s), %s, false)
                    RETURNING {_USER_COLUMNS}""",
                (login, email, password_hash),
            )
        except psycopg2.errors.UniqueViolation as e:
            # Lost a race with a concurrent registration
            constraint = getattr(e.diag, "constraint_name", None) or ""
            raise UserAlreadyExistsError("email" if "email" in constraint else "login")
        return self._to_user(rows[0])

    def confirm_email(self, user_id: UUID) -> bool:
        """
        Flip is_email_confirmed to true.

        Returns False if the user is missing or was already confirmed, so the
        transition happens at most once.
        """
        rows = self._db.execute_returning(
            """UPDATE users SET is_email_confirmed = true
               WHERE id = %s AND is_email_confirmed = false
               RETURNING id""",
            (user_id,),
        )
        return len(rows) > 0

    def update_password_hash(self, user_id: UUID, password_hash: str) -> bool:
        """
        Replace the stored password hash.

        Returns True if the user was found.
        """
        rows = self._db.execute_returning(
            "UPDATE users SET password_hash = %s WHERE id = %s RETURNING id",
            (password_hash, user_id),
        )
        return len(rows) > 0
