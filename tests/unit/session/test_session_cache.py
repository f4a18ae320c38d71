"""Tests for the advisory Redis session cache."""

from datetime import timedelta
from uuid import uuid4

from tonotes.core.modules.session.cache import session_key, user_sessions_key, user_version_key
from tonotes.core.modules.session.models import Session


def make_session(clock, user_id=None, **overrides):
    current = clock()
    fields = {
        "user_id": user_id or uuid4(),
        "created_at": current,
        "expires_at": current + timedelta(hours=24),
        "last_activity_at": current,
    }
    fields.update(overrides)
    return Session(**fields)


class TestSessionEntries:
    """Tests for per-session cache entries."""

    async def test_set_and_get(self, session_cache, clock, redis):
        session = make_session(clock)
        await session_cache.set_session(session)
        assert await session_cache.get_session(session.id) == session
        assert redis.ttl_of(session_key(session.id)) == timedelta(hours=24)

    async def test_expired_session_not_cached(self, session_cache, clock, redis):
        session = make_session(clock, expires_at=clock() - timedelta(seconds=1))
        await session_cache.set_session(session)
        assert redis.keys() == []

    async def test_corrupt_entry_dropped(self, session_cache, redis):
        session_id = uuid4()
        await redis.set(session_key(session_id), "{not json")
        assert await session_cache.get_session(session_id) is None
        assert redis.keys() == []

    async def test_errors_are_misses(self, session_cache, clock, redis):
        """Test that Redis failures never propagate to callers."""
        session = make_session(clock)
        redis.fail = True
        await session_cache.set_session(session)
        assert await session_cache.get_session(session.id) is None
        await session_cache.delete_session(session.id)
        assert await session_cache.get_version(session.user_id) is None


class TestUserSessionListing:
    """Tests for the versioned per-user listing."""

    async def test_cached_listing_returned_at_current_version(self, session_cache, clock):
        user_id = uuid4()
        sessions = [make_session(clock, user_id)]
        version = await session_cache.get_version(user_id)
        assert version == 0
        await session_cache.cache_user_sessions(user_id, sessions, version)
        assert await session_cache.get_user_sessions(user_id) == sessions

    async def test_listing_stale_after_version_bump(self, session_cache, clock, redis):
        """Test that a writer bumping the version invalidates older listings."""
        user_id = uuid4()
        await session_cache.cache_user_sessions(user_id, [make_session(clock, user_id)], 0)
        await session_cache.increment_version(user_id)
        assert await redis.get(user_version_key(user_id)) == "1"
        assert await session_cache.get_user_sessions(user_id) is None

    async def test_listing_ttl(self, session_cache, clock, redis):
        user_id = uuid4()
        await session_cache.cache_user_sessions(user_id, [], 0)
        assert redis.ttl_of(user_sessions_key(user_id)) == timedelta(minutes=5)


class TestCleanupExpired:
    async def test_removes_only_expired_entries(self, session_cache, clock, redis):
        short = make_session(clock, expires_at=clock() + timedelta(hours=1))
        long = make_session(clock)
        await session_cache.set_session(short)
        await session_cache.set_session(long)
        # Simulate an entry that outlived its session, e.g. after a TTL was lost
        await redis.set(session_key(short.id), short.model_dump_json())
        clock.advance(hours=2)

        assert await session_cache.cleanup_expired() == 1
        assert redis.keys() == [session_key(long.id)]

    async def test_redis_failure_removes_nothing(self, session_cache, redis):
        redis.fail = True
        assert await session_cache.cleanup_expired() == 0
