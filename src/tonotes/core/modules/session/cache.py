import json
from datetime import datetime, timedelta
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from tonotes.core.modules.session.models import Session
from tonotes.utils import Clock, as_utc, now

logger = structlog.get_logger(__name__)

USER_SESSIONS_TTL = timedelta(minutes=5)
SESSION_KEY_PREFIX = "session:"


def session_key(session_id: UUID) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def user_sessions_key(user_id: UUID) -> str:
    return f"user_sessions:{user_id}"


def user_version_key(user_id: UUID) -> str:
    return f"user_sessions_version:{user_id}"


class UserSessionsEntry(BaseModel):
    """Cached list of a user's live sessions, stamped with the version it was read at."""

    sessions: list[Session]
    version: int
    updated_at: datetime


class SessionCache:
    """Advisory Redis cache in front of the session store.

    Every method swallows Redis failures after logging them: a miss, an error
    and a stale entry all mean "ask MongoDB". Writers bump a per-user version
    counter; a cached user listing stamped with an older version is stale.
    """

    def __init__(self, client: Redis, clock: Clock = now) -> None:
        self._client = client
        self._clock = clock

    async def set_session(self, session: Session) -> None:
        ttl = as_utc(session.expires_at) - self._clock()
        seconds = int(ttl.total_seconds())
        if seconds <= 0:
            return
        try:
            await self._client.set(session_key(session.id), session.model_dump_json(), ex=seconds)
        except RedisError as e:
            logger.warning("session_cache_set_failed", session_id=str(session.id), error=str(e))

    async def get_session(self, session_id: UUID) -> Session | None:
        try:
            data = await self._client.get(session_key(session_id))
        except RedisError as e:
            logger.warning("session_cache_get_failed", session_id=str(session_id), error=str(e))
            return None
        if data is None:
            return None
        try:
            session = Session.model_validate_json(data)
        except ValidationError:
            await self.delete_session(session_id)
            return None
        if as_utc(session.expires_at) <= self._clock():
            await self.delete_session(session_id)
            return None
        return session

    async def delete_session(self, session_id: UUID) -> None:
        try:
            await self._client.delete(session_key(session_id))
        except RedisError as e:
            logger.warning("session_cache_delete_failed", session_id=str(session_id), error=str(e))

    async def get_version(self, user_id: UUID) -> int | None:
        try:
            value = await self._client.get(user_version_key(user_id))
        except RedisError as e:
            logger.warning("session_version_get_failed", user_id=str(user_id), error=str(e))
            return None
        return int(value) if value is not None else 0

    async def increment_version(self, user_id: UUID) -> None:
        try:
            await self._client.incr(user_version_key(user_id))
        except RedisError as e:
            logger.warning("session_version_increment_failed", user_id=str(user_id), error=str(e))

    async def cache_user_sessions(self, user_id: UUID, sessions: list[Session], version: int) -> None:
        entry = UserSessionsEntry(sessions=sessions, version=version, updated_at=self._clock())
        try:
            await self._client.set(
                user_sessions_key(user_id), entry.model_dump_json(), ex=int(USER_SESSIONS_TTL.total_seconds())
            )
        except RedisError as e:
            logger.warning("user_sessions_cache_set_failed", user_id=str(user_id), error=str(e))

    async def get_user_sessions(self, user_id: UUID) -> list[Session] | None:
        """Return the cached listing, or None on a miss or when the listing is stale."""
        try:
            data = await self._client.get(user_sessions_key(user_id))
        except RedisError as e:
            logger.warning("user_sessions_cache_get_failed", user_id=str(user_id), error=str(e))
            return None
        if data is None:
            return None

        try:
            entry = UserSessionsEntry.model_validate_json(data)
        except ValidationError:
            return None

        current = await self.get_version(user_id)
        if current is None or entry.version < current:
            logger.debug("user_sessions_cache_stale", user_id=str(user_id), cached=entry.version, current=current)
            return None
        return entry.sessions

    async def cleanup_expired(self) -> int:
        """Delete cached sessions whose expiry has passed. Returns the number removed."""
        removed = 0
        current = self._clock()
        try:
            async for key in self._client.scan_iter(match=f"{SESSION_KEY_PREFIX}*", count=100):
                data = await self._client.get(key)
                if data is None:
                    continue
                try:
                    expires_at = datetime.fromisoformat(json.loads(data)["expires_at"])
                except (ValueError, KeyError, TypeError):
                    continue
                if as_utc(expires_at) <= current:
                    await self._client.delete(key)
                    removed += 1
        except RedisError as e:
            logger.warning("session_cache_cleanup_failed", error=str(e))
        return removed
