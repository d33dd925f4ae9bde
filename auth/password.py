"""
Password hashing using bcrypt.

Hashes carry their own salt and cost factor, so verification never needs
the rounds setting that produced them.
"""

import functools
import logging

import bcrypt

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes; newer releases raise past that.
_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


@functools.lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> str:
    # Compared against when the login is unknown, at the same cost as real hashes
    return bcrypt.hashpw(b"dummy-password", bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """
    Hash a password using bcrypt.

    Raises:
        ValueError: If password is empty
    """
    if not password:
        raise ValueError("Password cannot be empty")

    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None, rounds: int = DEFAULT_ROUNDS) -> bool:
    """
    Verify a password against its hash.

    A missing hash still spends one bcrypt comparison, at the given cost
    factor, and returns False.
    """
    if not password:
        return False

    candidate = password_hash or _dummy_hash(rounds)
    try:
        matched = bcrypt.checkpw(_encode(password), candidate.encode("utf-8"))
    except ValueError as e:
        logger.warning(f"Password verification error: {e}")
        return False
    return matched and password_hash is not None
