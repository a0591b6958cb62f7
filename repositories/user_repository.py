"""
Persistence for the `users` collection.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo.database import Database

from schemas.models.user import UserDoc
from shared.datetime_utils import to_bson_datetime

COLLECTION = "users"


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    def __init__(self, db: Database) -> None:
        self._col = db[COLLECTION]

    def create(self, user: UserDoc) -> UserDoc:
        user.email = normalize_email(user.email)
        result = self._col.insert_one(user.to_mongo())
        user.id = result.inserted_id
        return user

    def get_by_id(self, user_id: ObjectId) -> Optional[UserDoc]:
        return UserDoc.from_mongo(self._col.find_one({"_id": user_id}))

    def get_by_email(self, email: str) -> Optional[UserDoc]:
        return UserDoc.from_mongo(
            self._col.find_one({"email": normalize_email(email)})
        )

    def update_email(self, user_id: ObjectId, email: str, now: datetime) -> bool:
        result = self._col.update_one(
            {"_id": user_id},
            {
                "$set": {
                    "email": normalize_email(email),
                    "updated_at": to_bson_datetime(now),
                }
            },
        )
        return result.matched_count > 0

    def update_password_hash(
        self, user_id: ObjectId, password_hash: str, now: datetime
    ) -> bool:
        result = self._col.update_one(
            {"_id": user_id},
            {
                "$set": {
                    "password_hash": password_hash,
                    "updated_at": to_bson_datetime(now),
                }
            },
        )
        return result.matched_count > 0

    def delete(self, user_id: ObjectId) -> bool:
        return self._col.delete_one({"_id": user_id}).deleted_count > 0
