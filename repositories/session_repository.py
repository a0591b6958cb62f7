"""
Persistence for the `sessions` collection.

Plain storage: no expiry logic lives here beyond the optional reaper query.
Store errors (PyMongoError) propagate to the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo.database import Database

from schemas.models.session import SessionDoc
from shared.datetime_utils import to_bson_datetime

COLLECTION = "sessions"


class SessionRepository:
    def __init__(self, db: Database) -> None:
        self._col = db[COLLECTION]

    def insert(self, session: SessionDoc) -> SessionDoc:
        result = self._col.insert_one(session.to_mongo())
        session.id = result.inserted_id
        return session

    def get(self, session_id: ObjectId) -> Optional[SessionDoc]:
        return SessionDoc.from_mongo(self._col.find_one({"_id": session_id}))

    def delete(self, session_id: ObjectId) -> bool:
        return self._col.delete_one({"_id": session_id}).deleted_count > 0

    def delete_for_user(self, user_id: ObjectId) -> int:
        return self._col.delete_many({"user_id": user_id}).deleted_count

    def delete_expired(self, now: datetime) -> int:
        cutoff = to_bson_datetime(now)
        return self._col.delete_many({"expiration_date": {"$lte": cutoff}}).deleted_count
