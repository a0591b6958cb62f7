"""
Base model for all MongoDB document models.

PyObjectId handles the mismatch between BSON ObjectId and Pydantic v2.
UtcDatetime normalises the naive UTC datetimes pymongo returns.
MongoBaseModel provides to_mongo() / from_mongo() for round-tripping between
Python objects and raw MongoDB dicts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, GetCoreSchemaHandler
from pydantic_core import core_schema

from shared.datetime_utils import ensure_utc, to_bson_datetime


class PyObjectId(ObjectId):
    """BSON ObjectId that Pydantic v2 knows how to validate and serialize."""

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.to_string_ser_schema(),
        )

    @classmethod
    def _validate(cls, v: Any) -> ObjectId:
        if isinstance(v, ObjectId):
            return v
        if isinstance(v, str) and ObjectId.is_valid(v):
            return ObjectId(v)
        raise ValueError(f"Invalid ObjectId: {v!r}")


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class MongoBaseModel(BaseModel):
    """
    Base for all document models.

    Stores the MongoDB _id as `id` (PyObjectId). Subclasses add collection-
    specific fields on top.

    to_mongo()  — converts model → dict suitable for pymongo insert/replace
    from_mongo() — converts raw pymongo dict → model instance (returns None
                    gracefully when passed None)
    """

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    id: Optional[PyObjectId] = Field(default=None, alias="_id")

    def to_mongo(self) -> dict:
        """Return a dict ready for MongoDB insertion.

        - Renames `id` → `_id`
        - Excludes None `_id` so MongoDB can auto-generate it on insert
        - Keeps ObjectId values; datetimes become naive UTC milliseconds
        """
        data = self.model_dump(by_alias=True, exclude_none=False, mode="python")
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = to_bson_datetime(value)
        if data.get("_id") is None:
            data.pop("_id", None)
        return data

    @classmethod
    def from_mongo(cls, data: Optional[dict]) -> Optional["MongoBaseModel"]:
        """Build a model instance from a raw MongoDB document dict.

        Returns None when data is None (e.g. find_one returns None).
        """
        if data is None:
            return None
        return cls.model_validate(data)
