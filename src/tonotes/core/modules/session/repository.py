from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase

from tonotes.core.db import storage_errors
from tonotes.core.modules.session.models import Session


class SessionRepository(Protocol):
    """Persistence operations the session registry relies on."""

    async def create_indexes(self) -> None: ...

    async def insert(self, session: Session) -> None: ...

    async def get(self, session_id: UUID) -> Session | None: ...

    async def list_live(self, user_id: UUID, at: datetime) -> list[Session]: ...

    async def count_live(self, user_id: UUID, at: datetime) -> int: ...

    async def find_least_active(self, user_id: UUID, at: datetime, exclude: UUID | None = None) -> Session | None: ...

    async def deactivate(self, session_id: UUID) -> Session | None: ...

    async def deactivate_all(self, user_id: UUID) -> int: ...

    async def touch(self, session_id: UUID, at: datetime) -> Session | None: ...

    async def update(self, session: Session) -> bool: ...

    async def delete_all(self, user_id: UUID) -> int: ...


def _live_filter(user_id: UUID, at: datetime) -> dict[str, Any]:
    return {"user_id": user_id, "is_active": True, "expires_at": {"$gt": at}}


class MongoSessionRepository:
    """Sessions collection. Every write is scoped by _id, so MongoDB serialises operations per session."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        self._collection = database.get_collection("sessions")

    async def create_indexes(self) -> None:
        with storage_errors("create_session_indexes"):
            await self._collection.create_index([("user_id", ASCENDING)])
            await self._collection.create_index(
                [("user_id", ASCENDING), ("is_active", ASCENDING), ("expires_at", ASCENDING)]
            )

    async def insert(self, session: Session) -> None:
        with storage_errors("insert_session", user_id=str(session.user_id)):
            await self._collection.insert_one(session.to_mongo())

    async def get(self, session_id: UUID) -> Session | None:
        with storage_errors("get_session", session_id=str(session_id)):
            doc = await self._collection.find_one({"_id": session_id})
        return Session.model_validate(doc) if doc else None

    async def list_live(self, user_id: UUID, at: datetime) -> list[Session]:
        with storage_errors("list_sessions", user_id=str(user_id)):
            cursor = self._collection.find(_live_filter(user_id, at)).sort("last_activity_at", DESCENDING)
            return await Session.list_cursor(cursor)

    async def count_live(self, user_id: UUID, at: datetime) -> int:
        with storage_errors("count_sessions", user_id=str(user_id)):
            return await self._collection.count_documents(_live_filter(user_id, at))

    async def find_least_active(self, user_id: UUID, at: datetime, exclude: UUID | None = None) -> Session | None:
        query = _live_filter(user_id, at)
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        with storage_errors("find_least_active_session", user_id=str(user_id)):
            doc = await self._collection.find_one(
                query, sort=[("last_activity_at", ASCENDING), ("created_at", ASCENDING)]
            )
        return Session.model_validate(doc) if doc else None

    async def deactivate(self, session_id: UUID) -> Session | None:
        """End a session only if it is still active; None means someone else got there first."""
        with storage_errors("deactivate_session", session_id=str(session_id)):
            doc = await self._collection.find_one_and_update(
                {"_id": session_id, "is_active": True},
                {"$set": {"is_active": False}},
                return_document=ReturnDocument.AFTER,
            )
        return Session.model_validate(doc) if doc else None

    async def deactivate_all(self, user_id: UUID) -> int:
        with storage_errors("deactivate_user_sessions", user_id=str(user_id)):
            result = await self._collection.update_many(
                {"user_id": user_id, "is_active": True}, {"$set": {"is_active": False}}
            )
        return result.modified_count

    async def touch(self, session_id: UUID, at: datetime) -> Session | None:
        # $max keeps last_activity_at monotonic when touches race
        with storage_errors("touch_session", session_id=str(session_id)):
            doc = await self._collection.find_one_and_update(
                {"_id": session_id, "is_active": True, "expires_at": {"$gt": at}},
                {"$max": {"last_activity_at": at}},
                return_document=ReturnDocument.AFTER,
            )
        return Session.model_validate(doc) if doc else None

    async def update(self, session: Session) -> bool:
        fields: dict[str, Any] = {
            "expires_at": session.expires_at,
            "device": session.device.model_dump(),
            "display_name": session.display_name,
            "ip_address": session.ip_address,
            "location": session.location,
        }
        update: dict[str, Any] = {"$set": fields, "$max": {"last_activity_at": session.last_activity_at}}
        if not session.is_active:
            fields["is_active"] = False
        with storage_errors("update_session", session_id=str(session.id)):
            result = await self._collection.update_one({"_id": session.id}, update)
        return result.matched_count > 0

    async def delete_all(self, user_id: UUID) -> int:
        with storage_errors("delete_user_sessions", user_id=str(user_id)):
            result = await self._collection.delete_many({"user_id": user_id})
        return result.deleted_count
