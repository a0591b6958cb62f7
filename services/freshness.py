"""
Freshness gate for sensitive account mutations.

Sensitive operations (changing the email on file, turning off two-factor)
require that the client completed a step-up recently. Recency comes from the
``verified_at`` stamp in the auth channel; a channel without one is treated
as never verified.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from errors import StaleVerificationError
from services.channels import AuthChannel
from services.step_up import last_verified_at
from shared.clock import Clock
from shared.logging import get_logger

log = get_logger(__name__)


class FreshnessGate:
    def __init__(self, clock: Clock, default_max_age: timedelta = timedelta(hours=2)) -> None:
        self._clock = clock
        self._default_max_age = default_max_age

    def is_recent(
        self, auth: Optional[AuthChannel], max_age: Optional[timedelta] = None
    ) -> bool:
        max_age = self._default_max_age if max_age is None else max_age
        return self._clock.now() - last_verified_at(auth) <= max_age

    def require_recent(
        self, auth: Optional[AuthChannel], max_age: Optional[timedelta] = None
    ) -> None:
        if not self.is_recent(auth, max_age):
            log.info(
                "freshness_check_failed",
                session_id=auth.session_id if auth else None,
            )
            raise StaleVerificationError(
                "Please verify your identity again to continue"
            )
