from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from pymongo import ASCENDING, ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from tonotes.core.db import storage_errors
from tonotes.core.modules.user.models import User
from tonotes.errors import UsernameTakenError


class UserRepository(Protocol):
    """Persistence operations the user and two-factor services rely on."""

    async def create_indexes(self) -> None: ...

    async def insert(self, user: User) -> None: ...

    async def get(self, user_id: UUID) -> User | None: ...

    async def get_by_username(self, username: str) -> User | None: ...

    async def update_password(self, user_id: UUID, password_hash: str, changed_at: datetime) -> bool: ...

    async def update_email(self, user_id: UUID, email: str, changed_at: datetime) -> bool: ...

    async def enable_two_factor(self, user_id: UUID, secret: str, recovery_codes: list[str]) -> bool: ...

    async def disable_two_factor(self, user_id: UUID) -> bool: ...

    async def pull_recovery_code(self, user_id: UUID, code_hash: str) -> int | None: ...

    async def delete(self, user_id: UUID) -> bool: ...


class MongoUserRepository:
    """Users collection, unique on username."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        self._collection = database.get_collection("users")

    async def create_indexes(self) -> None:
        with storage_errors("create_user_indexes"):
            await self._collection.create_index([("username", ASCENDING)], unique=True)

    async def insert(self, user: User) -> None:
        with storage_errors("insert_user"):
            try:
                await self._collection.insert_one(user.to_mongo())
            except DuplicateKeyError as e:
                raise UsernameTakenError from e

    async def get(self, user_id: UUID) -> User | None:
        with storage_errors("get_user", user_id=str(user_id)):
            doc = await self._collection.find_one({"_id": user_id})
        return User.model_validate(doc) if doc else None

    async def get_by_username(self, username: str) -> User | None:
        with storage_errors("get_user_by_username"):
            doc = await self._collection.find_one({"username": username})
        return User.model_validate(doc) if doc else None

    async def update_password(self, user_id: UUID, password_hash: str, changed_at: datetime) -> bool:
        with storage_errors("update_password", user_id=str(user_id)):
            result = await self._collection.update_one(
                {"_id": user_id}, {"$set": {"password_hash": password_hash, "last_password_change": changed_at}}
            )
        return result.matched_count > 0

    async def update_email(self, user_id: UUID, email: str, changed_at: datetime) -> bool:
        with storage_errors("update_email", user_id=str(user_id)):
            result = await self._collection.update_one(
                {"_id": user_id}, {"$set": {"email": email, "last_email_change": changed_at}}
            )
        return result.matched_count > 0

    async def enable_two_factor(self, user_id: UUID, secret: str, recovery_codes: list[str]) -> bool:
        """Store the secret and codes unless 2FA was enabled in the meantime."""
        with storage_errors("enable_two_factor", user_id=str(user_id)):
            result = await self._collection.update_one(
                {"_id": user_id, "two_factor_enabled": {"$ne": True}},
                {"$set": {"two_factor_enabled": True, "two_factor_secret": secret, "recovery_codes": recovery_codes}},
            )
        return result.modified_count > 0

    async def disable_two_factor(self, user_id: UUID) -> bool:
        with storage_errors("disable_two_factor", user_id=str(user_id)):
            result = await self._collection.update_one(
                {"_id": user_id},
                {"$set": {"two_factor_enabled": False, "two_factor_secret": None, "recovery_codes": []}},
            )
        return result.matched_count > 0

    async def pull_recovery_code(self, user_id: UUID, code_hash: str) -> int | None:
        """Atomically remove one recovery code digest.

        The filter only matches while the digest is still present, so two
        concurrent submissions of the same code cannot both succeed.
        Returns the number of codes left, or None if the code was not found.
        """
        with storage_errors("pull_recovery_code", user_id=str(user_id)):
            doc = await self._collection.find_one_and_update(
                {"_id": user_id, "recovery_codes": code_hash},
                {"$pull": {"recovery_codes": code_hash}},
                projection={"recovery_codes": True},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            return None
        return len(doc.get("recovery_codes", []))

    async def delete(self, user_id: UUID) -> bool:
        with storage_errors("delete_user", user_id=str(user_id)):
            result = await self._collection.delete_one({"_id": user_id})
        return result.deleted_count > 0
