"""
User document model.

Maps to the `users` MongoDB collection. Emails are stored lower-cased and
are unique. Sessions and second-factor enrollments reference the user id
and are removed together with the user.
"""

from __future__ import annotations

from typing import Optional

from schemas.models.base import MongoBaseModel, UtcDatetime


class UserDoc(MongoBaseModel):
    """Document model for the `users` collection."""

    email: str
    name: Optional[str] = None
    password_hash: Optional[str] = None
    email_confirmed: bool = False
    created_at: UtcDatetime
    updated_at: Optional[UtcDatetime] = None
