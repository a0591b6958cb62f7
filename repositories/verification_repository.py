"""
Persistence for the `verifications` collection.

The unique index on (target, type) is the only concurrency guard in the
system: concurrent upserts for the same pair race on it and the last
writer wins.
"""

from __future__ import annotations

from typing import Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from errors import ConstraintConflictError
from schemas.models.verification import VerificationDoc, VerificationType
from shared.logging import get_logger

log = get_logger(__name__)

COLLECTION = "verifications"


def _key(type_: VerificationType, target: str) -> dict:
    return {"target": target, "type": type_.value}


class VerificationRepository:
    def __init__(self, db: Database) -> None:
        self._col = db[COLLECTION]

    def upsert(self, doc: VerificationDoc) -> VerificationDoc:
        """Insert *doc*, replacing any outstanding challenge for its pair."""
        key = _key(doc.type, doc.target)
        data = doc.to_mongo()
        data.pop("_id", None)
        try:
            result = self._col.replace_one(key, data, upsert=True)
        except DuplicateKeyError:
            # Two upserts inserted at once; the row exists now, so replace it.
            log.info("verification_upsert_race", verification_type=doc.type.value)
            try:
                result = self._col.replace_one(key, data, upsert=True)
            except DuplicateKeyError as e:
                raise ConstraintConflictError(
                    "Concurrent challenge issuance could not be resolved"
                ) from e
        if result.upserted_id is not None:
            doc.id = result.upserted_id
        else:
            stored = self._col.find_one(key, {"_id": 1})
            doc.id = stored["_id"] if stored else None
        return doc

    def get(self, type_: VerificationType, target: str) -> Optional[VerificationDoc]:
        return VerificationDoc.from_mongo(self._col.find_one(_key(type_, target)))

    def exists(self, type_: VerificationType, target: str) -> bool:
        return self._col.count_documents(_key(type_, target), limit=1) > 0

    def delete(self, type_: VerificationType, target: str) -> bool:
        return self._col.delete_one(_key(type_, target)).deleted_count > 0

    def delete_for_target(self, target: str) -> int:
        return self._col.delete_many({"target": target}).deleted_count
