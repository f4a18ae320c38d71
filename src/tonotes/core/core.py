from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

import pymongo
import structlog
from pymongo import AsyncMongoClient
from redis.asyncio import Redis

from tonotes.config import Config
from tonotes.core.modules.password.hasher import PasswordHasher
from tonotes.core.modules.revocation.service import RevocationList
from tonotes.core.modules.session.cache import SessionCache
from tonotes.core.modules.session.device import Geolocator, HttpGeolocator
from tonotes.core.modules.session.repository import MongoSessionRepository, SessionRepository
from tonotes.core.modules.session.service import SessionService
from tonotes.core.modules.token.service import TokenService
from tonotes.core.modules.twofactor.service import TwoFactorService
from tonotes.core.modules.user.repository import MongoUserRepository, UserRepository
from tonotes.core.modules.user.service import UserService
from tonotes.core.service import Service
from tonotes.utils import Clock, now

logger = structlog.get_logger(__name__)

JANITOR_INTERVAL = timedelta(minutes=15)


class Services:
    """Service registry; services start in declaration order and stop in reverse."""

    user: UserService
    session: SessionService
    two_factor: TwoFactorService

    def __init__(self, user: UserService, session: SessionService, two_factor: TwoFactorService) -> None:
        self.user = user
        self.session = session
        self.two_factor = two_factor
        self._services: list[Service] = [user, session, two_factor]

    async def start_all(self) -> None:
        for service in self._services:
            await service.on_start()

    async def stop_all(self) -> None:
        for service in reversed(self._services):
            await service.on_stop()


class Core:
    """Container providing config, storage clients, and all service instances."""

    config: Config
    hasher: PasswordHasher
    tokens: TokenService
    revocation: RevocationList
    services: Services

    def __init__(
        self,
        config: Config,
        user_repository: UserRepository,
        session_repository: SessionRepository,
        redis: Redis,
        geolocator: Geolocator,
        *,
        mongo_client: AsyncMongoClient[dict[str, Any]] | None = None,
        hasher: PasswordHasher | None = None,
        clock: Clock = now,
    ) -> None:
        self.config = config
        self.mongo_client = mongo_client
        self.hasher = hasher or PasswordHasher()
        self.tokens = TokenService(
            config.jwt_secret_key,
            access_ttl=timedelta(seconds=config.jwt_expiration_time),
            refresh_ttl=timedelta(seconds=config.refresh_token_expiration_time),
            clock=clock,
        )
        self.revocation = RevocationList(redis, self.tokens)
        self.services = Services(
            user=UserService(user_repository, self.hasher, clock=clock),
            session=SessionService(
                session_repository,
                SessionCache(redis, clock=clock),
                geolocator,
                duration=timedelta(seconds=config.session_duration),
                idle_timeout=timedelta(seconds=config.session_idle_timeout),
                clock=clock,
            ),
            two_factor=TwoFactorService(user_repository, clock=clock),
        )
        self._janitor: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, config: Config) -> Core:
        """Build a Core wired to MongoDB, Redis and the HTTP geolocation service."""
        mongo_client: AsyncMongoClient[dict[str, Any]] = AsyncMongoClient(
            config.mongo_uri,
            maxPoolSize=config.mongo_max_pool_size,
            minPoolSize=config.mongo_min_pool_size,
            maxIdleTimeMS=config.mongo_max_conn_idle_time,
            connectTimeoutMS=10_000,
            tz_aware=True,
            uuidRepresentation="standard",
        )
        database = mongo_client.get_database(config.mongo_db)
        redis = Redis.from_url(
            config.redis_url, decode_responses=True, socket_timeout=5, socket_connect_timeout=5
        )
        return cls(
            config,
            MongoUserRepository(database),
            MongoSessionRepository(database),
            redis,
            HttpGeolocator(config.geoip_url, config.geoip_timeout),
            mongo_client=mongo_client,
        )

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Manage application lifecycle - startup and shutdown."""
        await self.on_start()
        try:
            yield
        finally:
            await self.on_stop()

    async def on_start(self) -> None:
        """Check MongoDB is reachable, start services and the session cache janitor."""
        if self.mongo_client is not None:
            with pymongo.timeout(2):
                await self.mongo_client.admin.command("ping")
            logger.info("mongo_connected", database=self.config.mongo_db)
        await self.services.start_all()
        self._janitor = asyncio.create_task(self._run_janitor(), name="session-cache-janitor")

    async def on_stop(self) -> None:
        """Stop the janitor, then services, then close Redis and MongoDB."""
        if self._janitor is not None:
            self._janitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._janitor
            self._janitor = None
        await self.services.stop_all()
        await self.revocation.close()
        if self.mongo_client is not None:
            await self.mongo_client.aclose()

    async def _run_janitor(self) -> None:
        while True:
            await asyncio.sleep(JANITOR_INTERVAL.total_seconds())
            try:
                await self.services.session.cleanup_cache()
            except Exception:
                logger.exception("session_cache_cleanup_failed")
