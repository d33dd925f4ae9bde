"""Per-device session registry.

One record per (user, device) lives in Valkey with a TTL matching the
refresh token lifetime. The record's issued_at is the current refresh
token generation: a refresh token is only honoured while its embedded
issued_at equals the stored one, and every rotation moves it forward.

All writes that depend on a prior read run inside a WATCH transaction,
so two requests racing on the same device can't both win.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from redis.client import Pipeline

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import SessionMismatchError, SessionNotFoundError
from auth.types import Session
from utils.timezone import now_utc, parse_iso, seconds_until

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Device session lifecycle: create, validate, rotate, revoke."""

    KEY_PREFIX = "session:"
    INDEX_PREFIX = "sessions:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _key(self, user_id: UUID, device_id: UUID | str) -> str:
        """Valkey key for one device session."""
        return f"{self.KEY_PREFIX}{user_id}:{device_id}"

    def _index_key(self, user_id: UUID) -> str:
        """Valkey set of device ids for a user."""
        return f"{self.INDEX_PREFIX}{user_id}"

    @property
    def _lifetime(self) -> timedelta:
        return timedelta(days=self._config.refresh_token_expiry_days)

    @staticmethod
    def _serialize(session: Session) -> dict:
        return {
            "user_id": str(session.user_id),
            "device_id": str(session.device_id),
            "issued_at": session.issued_at.isoformat(),
            "expires_at": session.expires_at.isoformat(),
            "ip": session.ip,
            "user_agent": session.user_agent,
        }

    @staticmethod
    def _deserialize(data: dict) -> Session:
        return Session(
            user_id=UUID(data["user_id"]),
            device_id=UUID(data["device_id"]),
            issued_at=parse_iso(data["issued_at"]),
            expires_at=parse_iso(data["expires_at"]),
            ip=data.get("ip"),
            user_agent=data.get("user_agent"),
        )

    def _load(self, pipe: Pipeline, key: str) -> Session | None:
        """Read a live session through a watching pipeline."""
        data = ValkeyClient.decode_json(key, pipe.get(key))
        if data is None:
            return None
        session = self._deserialize(data)
        # Belt and suspenders - Valkey TTL should handle this
        if now_utc() >= session.expires_at:
            return None
        return session

    def create_session(
        self,
        user_id: UUID,
        ip: str | None,
        user_agent: str | None,
    ) -> Session:
        """Create a session for a newly signed-in device."""
        now = now_utc()
        session = Session(
            user_id=user_id,
            device_id=uuid4(),
            issued_at=now,
            expires_at=now + self._lifetime,
            ip=ip,
            user_agent=user_agent,
        )

        ttl = seconds_until(session.expires_at, now)
        self._valkey.set_json(
            self._key(user_id, session.device_id),
            self._serialize(session),
            expire_seconds=ttl,
        )
        self._valkey.add_to_set(self._index_key(user_id), str(session.device_id), expire_seconds=ttl)

        logger.info(f"Session created for user {user_id} device {session.device_id}")
        return session

    def get_session(self, user_id: UUID, device_id: UUID) -> Session | None:
        """Live session for the device, or None."""
        data = self._valkey.get_json(self._key(user_id, device_id))
        if data is None:
            return None
        session = self._deserialize(data)
        if now_utc() >= session.expires_at:
            return None
        return session

    def validate(self, user_id: UUID, device_id: UUID, token_issued_at: datetime) -> Session:
        """
        Check that a refresh token belongs to the device's current generation.

        A mismatch means an already-rotated token was presented again, so the
        device session is revoked before raising.

        Raises:
            SessionNotFoundError: No live session for the device.
            SessionMismatchError: Token generation is not the current one.
        """
        session = self.get_session(user_id, device_id)
        if session is None:
            raise SessionNotFoundError("Session not found or expired")

        if session.issued_at != token_issued_at:
            logger.warning(f"Refresh token reuse for user {user_id} device {device_id}; revoking session")
            self.revoke(user_id, device_id)
            raise SessionMismatchError("Refresh token is not current")

        return session

    def rotate_session(
        self,
        user_id: UUID,
        device_id: UUID,
        expected_issued_at: datetime,
        ip: str | None,
        user_agent: str | None,
    ) -> Session:
        """
        Start a new token generation for an existing device session.

        Compare-and-set on issued_at: the overwrite only commits if the stored
        generation still equals expected_issued_at when the write lands. The
        new issued_at is strictly later than the old one.

        Raises:
            SessionNotFoundError: Session was logged out or expired.
            SessionMismatchError: Another request rotated it first; the
                device session is revoked.
        """
        key = self._key(user_id, device_id)

        def _rotate(pipe: Pipeline) -> Session | Exception:
            current = self._load(pipe, key)
            if current is None:
                return SessionNotFoundError("Session not found or expired")
            if current.issued_at != expected_issued_at:
                return SessionMismatchError("Refresh token is not current")

            now = now_utc()
            issued_at = max(now, current.issued_at + timedelta(microseconds=1))
            rotated = Session(
                user_id=user_id,
                device_id=device_id,
                issued_at=issued_at,
                expires_at=issued_at + self._lifetime,
                ip=ip,
                user_agent=user_agent,
            )
            ttl = seconds_until(rotated.expires_at, now)

            pipe.multi()
            pipe.setex(key, ttl, ValkeyClient.encode_json(self._serialize(rotated)))
            pipe.sadd(self._index_key(user_id), str(device_id))
            pipe.expire(self._index_key(user_id), ttl)
            return rotated

        result = self._valkey.transaction(_rotate, key)

        if isinstance(result, SessionMismatchError):
            logger.warning(f"Concurrent refresh for user {user_id} device {device_id}; revoking session")
            self.revoke(user_id, device_id)
            raise result
        if isinstance(result, Exception):
            raise result

        logger.info(f"Session rotated for user {user_id} device {device_id}")
        return result

    def revoke(self, user_id: UUID, device_id: UUID) -> bool:
        """
        Delete one device session.

        Safe to call for a session that no longer exists.
        Returns True if a session was deleted.
        """
        deleted = self._valkey.delete(self._key(user_id, device_id)) > 0
        self._valkey.remove_from_set(self._index_key(user_id), str(device_id))
        if deleted:
            logger.info(f"Session revoked for user {user_id} device {device_id}")
        return deleted

    def list_sessions(self, user_id: UUID) -> list[Session]:
        """Live sessions for the user, oldest generation first.

        Index entries whose session already expired are pruned.
        """
        sessions = []
        stale = []
        for device_id in self._valkey.set_members(self._index_key(user_id)):
            session = self.get_session(user_id, UUID(device_id))
            if session is None:
                stale.append(device_id)
            else:
                sessions.append(session)

        self._valkey.remove_from_set(self._index_key(user_id), *stale)
        return sorted(sessions, key=lambda s: s.issued_at)

    def revoke_all(self, user_id: UUID, except_device_id: UUID | None = None) -> int:
        """
        Delete every session of the user, optionally keeping one device.

        Returns the number of sessions deleted.
        """
        device_ids = [
            device_id
            for device_id in self._valkey.set_members(self._index_key(user_id))
            if except_device_id is None or device_id != str(except_device_id)
        ]
        if not device_ids:
            return 0

        deleted = self._valkey.delete(*(self._key(user_id, d) for d in device_ids))
        self._valkey.remove_from_set(self._index_key(user_id), *device_ids)

        logger.info(f"Revoked {deleted} session(s) for user {user_id}")
        return deleted
