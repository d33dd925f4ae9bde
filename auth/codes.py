"""Single-use confirmation and recovery codes.

Codes live in Valkey under their value, scoped by kind, with a TTL equal
to their lifetime. A per-user owner key points at the one outstanding
code of each kind; issuing a new code deletes the one it points at.
Consuming flips the record's consumed flag inside a WATCH transaction,
so concurrent consumers of one code see exactly one success.
"""

import logging
import secrets
from datetime import timedelta
from uuid import UUID

from redis.client import Pipeline

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import InvalidCodeError
from auth.types import Code, CodeKind
from utils.timezone import now_utc, parse_iso, seconds_until

logger = logging.getLogger(__name__)


class CodeManager:
    """Issue, check and consume confirmation/recovery codes."""

    KEY_PREFIX = "code:"
    OWNER_PREFIX = "code_owner:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _key(self, kind: CodeKind, value: str) -> str:
        return f"{self.KEY_PREFIX}{kind.value}:{value}"

    def _owner_key(self, kind: CodeKind, user_id: UUID) -> str:
        return f"{self.OWNER_PREFIX}{kind.value}:{user_id}"

    def _lifetime(self, kind: CodeKind) -> timedelta:
        if kind is CodeKind.RECOVERY:
            return timedelta(minutes=self._config.recovery_code_expiry_minutes)
        return timedelta(hours=self._config.confirmation_code_expiry_hours)

    @staticmethod
    def _serialize(code: Code) -> dict:
        return {
            "user_id": str(code.user_id),
            "kind": code.kind.value,
            "created_at": code.created_at.isoformat(),
            "expires_at": code.expires_at.isoformat(),
            "consumed": code.consumed,
        }

    @staticmethod
    def _deserialize(value: str, data: dict) -> Code:
        return Code(
            value=value,
            user_id=UUID(data["user_id"]),
            kind=CodeKind(data["kind"]),
            created_at=parse_iso(data["created_at"]),
            expires_at=parse_iso(data["expires_at"]),
            consumed=data["consumed"],
        )

    def issue(self, user_id: UUID, kind: CodeKind) -> Code:
        """
        Generate a fresh code, superseding any outstanding code of this kind.

        Returns the new code; its value is what gets mailed to the user.
        """
        now = now_utc()
        code = Code(
            value=secrets.token_urlsafe(32),
            user_id=user_id,
            kind=kind,
            created_at=now,
            expires_at=now + self._lifetime(kind),
            consumed=False,
        )
        ttl = seconds_until(code.expires_at, now)
        owner_key = self._owner_key(kind, user_id)

        def _issue(pipe: Pipeline) -> str | None:
            prior = pipe.get(owner_key)
            pipe.multi()
            if prior is not None:
                pipe.delete(self._key(kind, prior))
            pipe.setex(self._key(kind, code.value), ttl, ValkeyClient.encode_json(self._serialize(code)))
            pipe.setex(owner_key, ttl, code.value)
            return prior

        superseded = self._valkey.transaction(_issue, owner_key)

        if superseded is not None:
            logger.info(f"Superseded outstanding {kind.value} code for user {user_id}")
        logger.info(f"Issued {kind.value} code for user {user_id}")
        return code

    @staticmethod
    def _usable(code: Code | None) -> bool:
        return code is not None and not code.consumed and now_utc() < code.expires_at

    def peek(self, value: str, kind: CodeKind) -> UUID:
        """
        Check a code without consuming it.

        Raises:
            InvalidCodeError: Unknown, expired or already consumed.
        """
        data = self._valkey.get_json(self._key(kind, value))
        code = self._deserialize(value, data) if data is not None else None
        if not self._usable(code):
            raise InvalidCodeError("Code is invalid, expired or already used")
        return code.user_id

    def consume(self, value: str, kind: CodeKind) -> UUID:
        """
        Atomically check a code and mark it consumed.

        Returns the user the code was issued to.

        Raises:
            InvalidCodeError: Unknown, expired, already consumed, or consumed
                by a concurrent request first.
        """
        key = self._key(kind, value)

        def _consume(pipe: Pipeline) -> Code | None:
            data = ValkeyClient.decode_json(key, pipe.get(key))
            code = self._deserialize(value, data) if data is not None else None
            if not self._usable(code):
                return None

            consumed = code.model_copy(update={"consumed": True})
            pipe.multi()
            pipe.setex(key, seconds_until(code.expires_at), ValkeyClient.encode_json(self._serialize(consumed)))
            # Any write to the owner key also deletes this code, which the WATCH
            # on key would catch, so the owner still points here.
            pipe.delete(self._owner_key(kind, code.user_id))
            return consumed

        code = self._valkey.transaction(_consume, key)
        if code is None:
            raise InvalidCodeError("Code is invalid, expired or already used")

        logger.info(f"Consumed {kind.value} code for user {code.user_id}")
        return code.user_id
