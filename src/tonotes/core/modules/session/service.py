from datetime import timedelta
from uuid import UUID

import structlog

from tonotes.core.service import Service
from tonotes.core.modules.session.cache import SessionCache
from tonotes.core.modules.session.device import Geolocator, parse_user_agent, session_display_name
from tonotes.core.modules.session.models import MAX_ACTIVE_SESSIONS, ClientInfo, Session
from tonotes.core.modules.session.repository import SessionRepository
from tonotes.utils import Clock, as_utc, now

logger = structlog.get_logger(__name__)

# Bounds the pick-and-end loop when concurrent logins keep ending the same candidate
MAX_EVICTION_ATTEMPTS = 5


class SessionService(Service):
    """Registry of login sessions with a per-user cap on live sessions."""

    def __init__(
        self,
        repository: SessionRepository,
        cache: SessionCache,
        geolocator: Geolocator,
        duration: timedelta,
        idle_timeout: timedelta,
        clock: Clock = now,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._geolocator = geolocator
        self._duration = duration
        self._idle_timeout = idle_timeout
        self._clock = clock

    async def on_start(self) -> None:
        await self._repository.create_indexes()

    async def create(self, user_id: UUID, client: ClientInfo) -> Session:
        """Persist a new live session for the user. Does not enforce the cap; see open()."""
        device = parse_user_agent(client.user_agent)
        location = await self._geolocator.locate(client.ip_address)
        current = self._clock()
        session = Session(
            user_id=user_id,
            created_at=current,
            expires_at=current + self._duration,
            last_activity_at=current,
            device=device,
            display_name=session_display_name(device, location),
            ip_address=client.ip_address,
            location=location,
        )
        await self._repository.insert(session)
        await self._cache.set_session(session)
        await self._cache.increment_version(user_id)
        logger.info("session_created", session_id=str(session.id), user_id=str(user_id), device=str(device))
        return session

    async def open(self, user_id: UUID, client: ClientInfo) -> tuple[Session, list[Session]]:
        """Create a session for a login, ending the least active ones to stay within the cap.

        Returns the new session and the sessions that were ended to make room.
        Concurrent logins may each insert before either trims, so the count is
        re-checked after inserting and trimmed again, never touching the new session.
        """
        evicted: list[Session] = []
        if await self.count_active(user_id) >= MAX_ACTIVE_SESSIONS:
            ended = await self.end_least_active(user_id)
            if ended is not None:
                evicted.append(ended)

        session = await self.create(user_id, client)

        while await self.count_active(user_id) > MAX_ACTIVE_SESSIONS:
            ended = await self.end_least_active(user_id, exclude=session.id)
            if ended is None:
                break
            evicted.append(ended)

        return session, evicted

    async def get(self, session_id: UUID) -> Session | None:
        """Get a session by ID, live or not."""
        session = await self._cache.get_session(session_id)
        if session is not None:
            return session

        session = await self._repository.get(session_id)
        if session is not None and session.is_live(self._clock()):
            await self._cache.set_session(session)
        return session

    async def resolve(self, session_id: UUID, user_id: UUID) -> Session | None:
        """Return the touched session if it is live, owned by the user and not idle for too long."""
        current = self._clock()
        session = await self.get(session_id)
        if session is None or session.user_id != user_id or not session.is_live(current):
            return None

        if current - as_utc(session.last_activity_at) > self._idle_timeout:
            logger.info("session_idle_timeout", session_id=str(session_id), user_id=str(user_id))
            await self.end(session_id)
            return None

        # The store is authoritative: a cached entry may still say active after the session ended
        return await self.touch(session_id)

    async def touch(self, session_id: UUID) -> Session | None:
        """Bump last_activity_at to now. No-op for inactive or expired sessions."""
        touched = await self._repository.touch(session_id, self._clock())
        if touched is not None:
            await self._cache.set_session(touched)
            # Activity changes the listing order
            await self._cache.increment_version(touched.user_id)
        return touched

    async def list_active(self, user_id: UUID) -> list[Session]:
        """Live sessions, most recently active first."""
        current = self._clock()
        cached = await self._cache.get_user_sessions(user_id)
        if cached is not None:
            return [session for session in cached if session.is_live(current)]

        version = await self._cache.get_version(user_id)
        sessions = await self._repository.list_live(user_id, current)
        if version is not None:
            await self._cache.cache_user_sessions(user_id, sessions, version)
        return sessions

    async def count_active(self, user_id: UUID) -> int:
        return await self._repository.count_live(user_id, self._clock())

    async def end_least_active(self, user_id: UUID, exclude: UUID | None = None) -> Session | None:
        """End the live session with the oldest activity (ties: oldest created).

        Returns the ended session, or None if the user has no other live session.
        """
        for _ in range(MAX_EVICTION_ATTEMPTS):
            candidate = await self._repository.find_least_active(user_id, self._clock(), exclude)
            if candidate is None:
                return None
            ended = await self._repository.deactivate(candidate.id)
            if ended is not None:
                await self._invalidate(ended)
                logger.info("session_evicted", session_id=str(ended.id), user_id=str(user_id))
                return ended
        logger.warning("session_eviction_contended", user_id=str(user_id))
        return None

    async def end(self, session_id: UUID) -> Session | None:
        """Mark a single session inactive. Returns None if it was already inactive or unknown."""
        ended = await self._repository.deactivate(session_id)
        if ended is not None:
            await self._invalidate(ended)
            logger.info("session_ended", session_id=str(session_id), user_id=str(ended.user_id))
        return ended

    async def end_all(self, user_id: UUID) -> int:
        live = await self._repository.list_live(user_id, self._clock())
        count = await self._repository.deactivate_all(user_id)
        for session in live:
            await self._cache.delete_session(session.id)
        await self._cache.increment_version(user_id)
        logger.info("sessions_ended", user_id=str(user_id), count=count)
        return count

    async def update(self, session: Session) -> bool:
        """Persist mutated session fields. An inactive session is never re-activated."""
        updated = await self._repository.update(session)
        if updated:
            # Dropped rather than overwritten: the stored is_active may differ from the caller's copy
            await self._invalidate(session)
        return updated

    async def delete_all(self, user_id: UUID) -> int:
        """Remove every session record of a user, used when the account is deleted."""
        live = await self._repository.list_live(user_id, self._clock())
        count = await self._repository.delete_all(user_id)
        for session in live:
            await self._cache.delete_session(session.id)
        await self._cache.increment_version(user_id)
        return count

    async def cleanup_cache(self) -> int:
        removed = await self._cache.cleanup_expired()
        if removed:
            logger.info("session_cache_cleaned", removed=removed)
        return removed

    async def _invalidate(self, session: Session) -> None:
        await self._cache.delete_session(session.id)
        await self._cache.increment_version(session.user_id)
