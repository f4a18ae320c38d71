"""Shared pytest fixtures and in-memory doubles for MongoDB, Redis and the clock."""

import fnmatch
from collections.abc import AsyncIterator, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from tonotes.app import App
from tonotes.config import Config
from tonotes.core.core import Core
from tonotes.core.modules.password.hasher import PasswordHasher
from tonotes.core.modules.revocation.service import RevocationList
from tonotes.core.modules.session.cache import SessionCache
from tonotes.core.modules.session.models import Session
from tonotes.core.modules.session.service import SessionService
from tonotes.core.modules.token.service import TokenService
from tonotes.core.modules.twofactor.service import TwoFactorService
from tonotes.core.modules.user.models import User
from tonotes.core.modules.user.service import UserService
from tonotes.errors import UsernameTakenError
from tonotes.web.server import create_fastapi_app

START = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
TEST_SECRET = "test-secret-key"


class FakeClock:
    """Controllable replacement for tonotes.utils.now."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakePipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._commands: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._commands.clear()

    def exists(self, *keys: str) -> "FakePipeline":
        self._commands.append(("exists", keys))
        return self

    async def execute(self) -> list[Any]:
        results = []
        for name, args in self._commands:
            results.append(await getattr(self._redis, name)(*args))
        self._commands.clear()
        return results


class FakeRedis:
    """Just enough of redis.asyncio.Redis (decode_responses=True) for the cache and revocation list.

    Set ``fail = True`` to make every command raise a connection error.
    """

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self._data: dict[str, str] = {}
        self._expires: dict[str, datetime] = {}
        self.fail = False
        self.closed = False

    def ttl_of(self, key: str) -> timedelta | None:
        expires = self._expires.get(key)
        return expires - self._clock() if expires else None

    def keys(self) -> list[str]:
        return [key for key in list(self._data) if self._alive(key)]

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    def _alive(self, key: str) -> bool:
        expires = self._expires.get(key)
        if expires is not None and expires <= self._clock():
            self._data.pop(key, None)
            self._expires.pop(key, None)
            return False
        return key in self._data

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self._data[key] = str(value)
        if ex is not None:
            self._expires[key] = self._clock() + timedelta(seconds=ex)
        else:
            self._expires.pop(key, None)
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self._data[key] if self._alive(key) else None

    async def exists(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self._alive(key))

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        self._check()
        value = int(self._data[key]) + 1 if self._alive(key) else 1
        self._data[key] = str(value)
        return value

    async def scan_iter(self, match: str | None = None, count: int | None = None) -> AsyncIterator[str]:
        self._check()
        for key in self.keys():
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True


class FakeGeolocator:
    def __init__(self, location: str = "Berlin, Germany") -> None:
        self.location = location
        self.calls: list[str] = []

    async def locate(self, ip: str) -> str:
        self.calls.append(ip)
        return self.location


class InMemoryUserRepository:
    def __init__(self) -> None:
        self.users: dict[UUID, User] = {}

    async def create_indexes(self) -> None:
        pass

    async def insert(self, user: User) -> None:
        if any(existing.username == user.username for existing in self.users.values()):
            raise UsernameTakenError
        self.users[user.id] = user.model_copy(deep=True)

    async def get(self, user_id: UUID) -> User | None:
        user = self.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_by_username(self, username: str) -> User | None:
        for user in self.users.values():
            if user.username == username:
                return user.model_copy(deep=True)
        return None

    async def update_password(self, user_id: UUID, password_hash: str, changed_at: datetime) -> bool:
        user = self.users.get(user_id)
        if user is None:
            return False
        user.password_hash = password_hash
        user.last_password_change = changed_at
        return True

    async def update_email(self, user_id: UUID, email: str, changed_at: datetime) -> bool:
        user = self.users.get(user_id)
        if user is None:
            return False
        user.email = email
        user.last_email_change = changed_at
        return True

    async def enable_two_factor(self, user_id: UUID, secret: str, recovery_codes: list[str]) -> bool:
        user = self.users.get(user_id)
        if user is None or user.two_factor_enabled:
            return False
        user.two_factor_enabled = True
        user.two_factor_secret = secret
        user.recovery_codes = list(recovery_codes)
        return True

    async def disable_two_factor(self, user_id: UUID) -> bool:
        user = self.users.get(user_id)
        if user is None:
            return False
        user.two_factor_enabled = False
        user.two_factor_secret = None
        user.recovery_codes = []
        return True

    async def pull_recovery_code(self, user_id: UUID, code_hash: str) -> int | None:
        user = self.users.get(user_id)
        if user is None or code_hash not in user.recovery_codes:
            return None
        user.recovery_codes = [code for code in user.recovery_codes if code != code_hash]
        return len(user.recovery_codes)

    async def delete(self, user_id: UUID) -> bool:
        return self.users.pop(user_id, None) is not None


class InMemorySessionRepository:
    def __init__(self) -> None:
        self.sessions: dict[UUID, Session] = {}

    def _live(self, user_id: UUID, at: datetime) -> list[Session]:
        return [s for s in self.sessions.values() if s.user_id == user_id and s.is_live(at)]

    async def create_indexes(self) -> None:
        pass

    async def insert(self, session: Session) -> None:
        self.sessions[session.id] = session.model_copy(deep=True)

    async def get(self, session_id: UUID) -> Session | None:
        session = self.sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def list_live(self, user_id: UUID, at: datetime) -> list[Session]:
        live = sorted(self._live(user_id, at), key=lambda s: s.last_activity_at, reverse=True)
        return [s.model_copy(deep=True) for s in live]

    async def count_live(self, user_id: UUID, at: datetime) -> int:
        return len(self._live(user_id, at))

    async def find_least_active(self, user_id: UUID, at: datetime, exclude: UUID | None = None) -> Session | None:
        candidates = [s for s in self._live(user_id, at) if s.id != exclude]
        if not candidates:
            return None
        return min(candidates, key=lambda s: (s.last_activity_at, s.created_at)).model_copy(deep=True)

    async def deactivate(self, session_id: UUID) -> Session | None:
        session = self.sessions.get(session_id)
        if session is None or not session.is_active:
            return None
        session.is_active = False
        return session.model_copy(deep=True)

    async def deactivate_all(self, user_id: UUID) -> int:
        count = 0
        for session in self.sessions.values():
            if session.user_id == user_id and session.is_active:
                session.is_active = False
                count += 1
        return count

    async def touch(self, session_id: UUID, at: datetime) -> Session | None:
        session = self.sessions.get(session_id)
        if session is None or not session.is_live(at):
            return None
        session.last_activity_at = max(session.last_activity_at, at)
        return session.model_copy(deep=True)

    async def update(self, session: Session) -> bool:
        stored = self.sessions.get(session.id)
        if stored is None:
            return False
        stored.expires_at = session.expires_at
        stored.device = session.device.model_copy()
        stored.display_name = session.display_name
        stored.ip_address = session.ip_address
        stored.location = session.location
        stored.last_activity_at = max(stored.last_activity_at, session.last_activity_at)
        if not session.is_active:
            stored.is_active = False
        return True

    async def delete_all(self, user_id: UUID) -> int:
        doomed = [sid for sid, s in self.sessions.items() if s.user_id == user_id]
        for sid in doomed:
            del self.sessions[sid]
        return len(doomed)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def geolocator():
    return FakeGeolocator()


@pytest.fixture
def user_repository():
    return InMemoryUserRepository()


@pytest.fixture
def session_repository():
    return InMemorySessionRepository()


@pytest.fixture
def hasher():
    """Argon2id with minimal cost so tests stay fast."""
    return PasswordHasher(memory_cost=1024, time_cost=1, parallelism=1)


@pytest.fixture
def config():
    return Config(jwt_secret_key=TEST_SECRET, cookie_secure=False, _env_file=None)


@pytest.fixture
def token_service(clock):
    return TokenService(TEST_SECRET, access_ttl=timedelta(minutes=15), refresh_ttl=timedelta(days=7), clock=clock)


@pytest.fixture
def revocation_list(redis, token_service):
    return RevocationList(redis, token_service)


@pytest.fixture
def session_cache(redis, clock):
    return SessionCache(redis, clock=clock)


@pytest.fixture
def session_service(session_repository, session_cache, geolocator, clock):
    return SessionService(
        session_repository,
        session_cache,
        geolocator,
        duration=timedelta(hours=24),
        idle_timeout=timedelta(hours=48),
        clock=clock,
    )


@pytest.fixture
def user_service(user_repository, hasher, clock):
    return UserService(user_repository, hasher, clock=clock)


@pytest.fixture
def two_factor_service(user_repository, clock):
    return TwoFactorService(user_repository, clock=clock)


@pytest.fixture
def core(config, user_repository, session_repository, redis, geolocator, hasher, clock):
    return Core(config, user_repository, session_repository, redis, geolocator, hasher=hasher, clock=clock)


@pytest.fixture
def app(core):
    return App(core)


@pytest.fixture
def client(app, config) -> Iterator[TestClient]:
    with TestClient(create_fastapi_app(app, config)) as test_client:
        yield test_client
