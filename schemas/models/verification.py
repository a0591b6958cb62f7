"""
Verification (challenge) document model.

Maps to the `verifications` MongoDB collection.

One shape covers every purpose. ``(target, type)`` is unique, so there is
at most one outstanding challenge per target per purpose. The presence of
``expires_at`` is the only discriminator between a one-shot mailed code
(consumed on success) and a recurring authenticator secret (kept).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from schemas.models.base import MongoBaseModel, UtcDatetime


class VerificationType(str, Enum):
    EMAIL_CONFIRMATION = "email-confirmation"
    PASSWORD_RESET = "password-reset"
    EMAIL_CHANGE = "email-change"
    SECOND_FACTOR = "2fa"
    SECOND_FACTOR_SETUP = "2fa-verify"

    @property
    def is_recurring(self) -> bool:
        """Only an enrolled second factor outlives a successful validation."""
        return self is VerificationType.SECOND_FACTOR


# Purposes a client may request directly through the issue endpoint
MAILED_TYPES = frozenset(
    {VerificationType.EMAIL_CONFIRMATION, VerificationType.PASSWORD_RESET}
)


class VerificationDoc(MongoBaseModel):
    """Document model for the `verifications` collection."""

    type: VerificationType
    target: str
    secret: str
    algorithm: str
    digits: int = Field(ge=1, le=10)
    period: int = Field(gt=0)
    char_set: str = Field(min_length=2)
    created_at: UtcDatetime
    expires_at: Optional[UtcDatetime] = None

    @property
    def is_one_shot(self) -> bool:
        return self.expires_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_mongo(self) -> dict:
        data = super().to_mongo()
        data["type"] = self.type.value
        return data
