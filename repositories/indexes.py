"""
Index bootstrap, run once on application startup.
"""

from __future__ import annotations

from pymongo import ASCENDING
from pymongo.database import Database

from repositories import session_repository, user_repository, verification_repository
from shared.logging import get_logger

log = get_logger(__name__)


def ensure_indexes(db: Database) -> None:
    users = db[user_repository.COLLECTION]
    users.create_index([("email", ASCENDING)], unique=True)

    sessions = db[session_repository.COLLECTION]
    sessions.create_index([("user_id", ASCENDING)])
    sessions.create_index([("expiration_date", ASCENDING)])

    verifications = db[verification_repository.COLLECTION]
    verifications.create_index(
        [("target", ASCENDING), ("type", ASCENDING)],
        unique=True,
        name="verification_target_type_key",
    )

    log.info("indexes_ensured", database=db.name)
