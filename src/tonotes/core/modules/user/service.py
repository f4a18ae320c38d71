from datetime import datetime, timedelta
from uuid import UUID

import structlog

from tonotes.core.service import Service
from tonotes.core.modules.password.hasher import PasswordHasher
from tonotes.core.modules.user.models import User
from tonotes.core.modules.user.repository import UserRepository
from tonotes.core.modules.user.validators import validate_email, validate_password, validate_username
from tonotes.errors import (
    InvalidCredentialsError,
    InvalidInputError,
    NotFoundError,
    RateLimitedError,
    UsernameTakenError,
)
from tonotes.utils import Clock, as_utc, now

logger = structlog.get_logger(__name__)

PROFILE_CHANGE_COOLDOWN = timedelta(days=14)


class UserService(Service):
    """Manages user accounts and their credentials."""

    def __init__(self, repository: UserRepository, hasher: PasswordHasher, clock: Clock = now) -> None:
        self._repository = repository
        self._hasher = hasher
        self._clock = clock

    async def on_start(self) -> None:
        await self._repository.create_indexes()

    async def get_user(self, user_id: UUID) -> User:
        user = await self._repository.get(user_id)
        if user is None:
            raise NotFoundError(f"User '{user_id}' not found")
        return user

    async def register(self, username: str, email: str, password: str) -> User:
        """Create user with hashed password."""
        validate_username(username)
        validate_email(email)
        validate_password(password)
        if await self._repository.get_by_username(username) is not None:
            raise UsernameTakenError

        user = User(
            username=username,
            email=email,
            password_hash=self._hasher.hash(password),
            created_at=self._clock(),
        )
        await self._repository.insert(user)
        logger.info("user_registered", user_id=str(user.id))
        return user

    async def authenticate(self, username: str, password: str) -> User:
        """Return the user if the password matches and the account is active.

        Unknown usernames, wrong passwords and inactive accounts raise the same
        error, and an unknown username still costs one argon2 verification.
        """
        user = await self._repository.get_by_username(username)
        if user is None:
            self._hasher.verify_dummy(password)
            raise InvalidCredentialsError
        if not self._hasher.verify(user.password_hash, password) or not user.is_active:
            raise InvalidCredentialsError
        return user

    async def change_password(self, user_id: UUID, old_password: str, new_password: str) -> User:
        """Change user password after verifying current password."""
        user = await self.get_user(user_id)
        self._ensure_cooldown_passed(user.last_password_change, "Password")

        if not self._hasher.verify(user.password_hash, old_password):
            raise InvalidCredentialsError("Current password is incorrect")

        validate_password(new_password)
        if self._hasher.verify(user.password_hash, new_password):
            raise InvalidInputError("New password cannot be the same as current password")

        changed_at = self._clock()
        if not await self._repository.update_password(user_id, self._hasher.hash(new_password), changed_at):
            raise NotFoundError(f"User '{user_id}' not found")
        logger.info("password_changed", user_id=str(user_id))
        return await self.get_user(user_id)

    async def change_email(self, user_id: UUID, new_email: str) -> User:
        user = await self.get_user(user_id)
        validate_email(new_email)
        if user.email == new_email:
            raise InvalidInputError("New email is same as current email")
        self._ensure_cooldown_passed(user.last_email_change, "Email")

        if not await self._repository.update_email(user_id, new_email, self._clock()):
            raise NotFoundError(f"User '{user_id}' not found")
        logger.info("email_changed", user_id=str(user_id))
        return await self.get_user(user_id)

    async def delete_user(self, user_id: UUID) -> None:
        """Delete a user from the system."""
        if not await self._repository.delete(user_id):
            raise NotFoundError(f"User '{user_id}' not found")
        logger.info("user_deleted", user_id=str(user_id))

    def _ensure_cooldown_passed(self, last_change: datetime | None, what: str) -> None:
        if last_change is None:
            return
        next_allowed = as_utc(last_change) + PROFILE_CHANGE_COOLDOWN
        if self._clock() < next_allowed:
            raise RateLimitedError(f"{what} can only be changed every 2 weeks", next_allowed_change=next_allowed)
