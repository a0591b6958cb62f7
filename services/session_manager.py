"""
Session lifecycle: create, resolve, destroy.

Expiry is evaluated at read time against the injected clock; no background
sweeper is required (``reap_expired`` exists for opportunistic cleanup).
Resolution never reveals why a token failed: absent, malformed, unknown and
expired tokens all come back as ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Union

from bson import ObjectId

from repositories.session_repository import SessionRepository
from schemas.models.session import SessionDoc
from services.channels import AuthChannel
from shared.clock import Clock
from shared.datetime_utils import truncate_to_millis
from shared.generators import generate_session_id
from shared.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class Authenticated:
    user_id: str
    session_id: str


@dataclass(frozen=True)
class Unauthenticated:
    # True when the client presented a channel that must now be cleared
    revoke_client_state: bool = False


AuthResult = Union[Authenticated, Unauthenticated]


def parse_session_id(token: Optional[str]) -> Optional[ObjectId]:
    if not token or not isinstance(token, str) or not ObjectId.is_valid(token):
        return None
    return ObjectId(token)


class SessionManager:
    def __init__(self, sessions: SessionRepository, clock: Clock) -> None:
        self._sessions = sessions
        self._clock = clock

    def create(self, user_id: str, ttl: timedelta) -> SessionDoc:
        now = truncate_to_millis(self._clock.now())
        session = SessionDoc(
            _id=generate_session_id(),
            user_id=user_id,
            created_at=now,
            expiration_date=now + ttl,
        )
        session = self._sessions.insert(session)
        log.info(
            "session_created",
            session_id=str(session.id),
            user_id=user_id,
            expires_at=session.expiration_date.isoformat(),
        )
        return session

    def get(self, session_token: Optional[str]) -> Optional[SessionDoc]:
        """Load the row behind *session_token* whether live or not."""
        session_id = parse_session_id(session_token)
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def resolve(self, session_token: Optional[str]) -> Optional[str]:
        session = self.get(session_token)
        if session is None or not session.is_live(self._clock.now()):
            return None
        return str(session.user_id)

    def authenticate(self, auth: Optional[AuthChannel]) -> AuthResult:
        """Resolve the session bound in *auth* into an explicit outcome."""
        if auth is None:
            return Unauthenticated()
        user_id = self.resolve(auth.session_id)
        if user_id is None:
            log.info("session_rejected", reason="not_authenticated")
            return Unauthenticated(revoke_client_state=True)
        return Authenticated(user_id=user_id, session_id=auth.session_id)

    def destroy(self, session_token: Optional[str]) -> None:
        session_id = parse_session_id(session_token)
        if session_id is None:
            return
        if self._sessions.delete(session_id):
            log.info("session_destroyed", session_id=str(session_id))

    def destroy_all_for_user(self, user_id: str) -> int:
        count = self._sessions.delete_for_user(ObjectId(user_id))
        log.info("sessions_destroyed_for_user", user_id=user_id, count=count)
        return count

    def reap_expired(self) -> int:
        count = self._sessions.delete_expired(self._clock.now())
        if count:
            log.info("expired_sessions_reaped", count=count)
        return count
