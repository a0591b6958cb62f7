"""
Session document model.

Maps to the `sessions` MongoDB collection.

A session is live while ``now < expiration_date``. Dead rows are never
treated as valid but are not eagerly purged; the row is never mutated after
insertion and disappears on logout or when its user is deleted.
"""

from __future__ import annotations

from datetime import datetime

from schemas.models.base import MongoBaseModel, PyObjectId, UtcDatetime


class SessionDoc(MongoBaseModel):
    """Document model for the `sessions` collection."""

    user_id: PyObjectId
    created_at: UtcDatetime
    expiration_date: UtcDatetime

    def is_live(self, now: datetime) -> bool:
        return now < self.expiration_date
