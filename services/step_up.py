"""
Two-phase login: credentials first, then an optional second factor.

States::

    CREDENTIALS_CHECKED ──► COMMITTED                    (no second factor)
    CREDENTIALS_CHECKED ──► PENDING_STEP_UP ──► STEP_UP_VERIFIED ──► COMMITTED

A candidate session row is always created up front. When the user has a
second factor enrolled, the row is only referenced from the verify channel
until a code is accepted; holding that channel alone grants nothing. On
success the same session id is bound into the auth channel.

Pending-login state lives only in the signed verify channel, never in the
store. Committing tells the caller to discard that channel, after which a
further submission is an invalid-state error. A client that kept a copy of
the channel can replay it until it expires (``verify_ttl``) together with a
currently valid code. The replay mints nothing: it binds the same candidate
session id again, which that client already proved it may hold.

The controller returns ``LoginOutcome`` values and never touches HTTP; the
routing layer turns outcomes into cookies.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from errors import InvalidStateError, LoginFlowAbortedError
from schemas.models.verification import VerificationType
from services.channels import AuthChannel, VerifyChannel
from services.code_engine import CodeEngine
from services.session_manager import SessionManager
from shared.clock import Clock
from shared.datetime_utils import EPOCH
from shared.logging import get_logger

log = get_logger(__name__)


class LoginState(str, Enum):
    CREDENTIALS_CHECKED = "credentials_checked"
    PENDING_STEP_UP = "pending_step_up"
    STEP_UP_VERIFIED = "step_up_verified"
    COMMITTED = "committed"


ALLOWED_TRANSITIONS: dict[LoginState, tuple[LoginState, ...]] = {
    LoginState.CREDENTIALS_CHECKED: (LoginState.PENDING_STEP_UP, LoginState.COMMITTED),
    LoginState.PENDING_STEP_UP: (LoginState.STEP_UP_VERIFIED,),
    LoginState.STEP_UP_VERIFIED: (LoginState.COMMITTED,),
    LoginState.COMMITTED: (),
}


def ensure_transition(current: LoginState, target: LoginState) -> LoginState:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Invalid login transition: {current.value} -> {target.value}"
        )
    return target


@dataclass(frozen=True)
class LoginOutcome:
    state: LoginState
    session_id: str
    auth: Optional[AuthChannel] = None
    pending: Optional[VerifyChannel] = None
    clear_pending: bool = False

    @property
    def step_up_required(self) -> bool:
        return self.state is LoginState.PENDING_STEP_UP


def last_verified_at(auth: Optional[AuthChannel]) -> datetime:
    """When the client last completed a step-up; the epoch means never."""
    if auth is None or auth.verified_at is None:
        return EPOCH
    return auth.verified_at


class StepUpController:
    def __init__(
        self,
        sessions: SessionManager,
        codes: CodeEngine,
        clock: Clock,
        session_ttl: timedelta,
        recent_verification: timedelta = timedelta(hours=2),
    ) -> None:
        self._sessions = sessions
        self._codes = codes
        self._clock = clock
        self._session_ttl = session_ttl
        self._recent_verification = recent_verification

    def begin_login(self, user_id: str, remember: bool = False) -> LoginOutcome:
        state = LoginState.CREDENTIALS_CHECKED
        session = self._sessions.create(user_id, self._session_ttl)
        session_id = str(session.id)

        if self._codes.has_enrollment(VerificationType.SECOND_FACTOR, user_id):
            state = ensure_transition(state, LoginState.PENDING_STEP_UP)
            log.info("step_up_required", user_id=user_id, session_id=session_id)
            return LoginOutcome(
                state=state,
                session_id=session_id,
                pending=VerifyChannel(
                    unverified_session_id=session_id, remember=remember
                ),
            )

        state = ensure_transition(state, LoginState.COMMITTED)
        log.info("login_committed", user_id=user_id, session_id=session_id, step_up=False)
        return LoginOutcome(
            state=state,
            session_id=session_id,
            auth=AuthChannel(
                session_id=session_id,
                expires=session.expiration_date if remember else None,
            ),
        )

    def submit_step_up_code(
        self, pending: Optional[VerifyChannel], code: str
    ) -> LoginOutcome:
        if pending is None or not pending.has_pending_login:
            raise InvalidStateError("No login is waiting for a verification code")
        state = LoginState.PENDING_STEP_UP

        session_id = pending.unverified_session_id
        session = self._sessions.get(session_id)
        if session is None:
            log.warning("step_up_aborted", session_id=session_id, reason="session_missing")
            raise LoginFlowAbortedError("Login expired, please sign in again")
        user_id = str(session.user_id)

        # CodeMismatchError propagates and the login stays pending
        self._codes.validate(VerificationType.SECOND_FACTOR, user_id, code)
        state = ensure_transition(state, LoginState.STEP_UP_VERIFIED)

        # The row may have gone while the code was being checked
        session = self._sessions.get(session_id)
        if session is None or not session.is_live(self._clock.now()):
            log.warning("step_up_aborted", session_id=session_id, reason="session_missing")
            raise LoginFlowAbortedError("Login expired, please sign in again")

        state = ensure_transition(state, LoginState.COMMITTED)
        log.info("login_committed", user_id=user_id, session_id=session_id, step_up=True)
        return LoginOutcome(
            state=state,
            session_id=session_id,
            auth=AuthChannel(
                session_id=session_id,
                verified_at=self._clock.now(),
                expires=session.expiration_date if pending.remember else None,
            ),
            clear_pending=True,
        )

    def reverify(self, auth: AuthChannel, user_id: str, code: str) -> AuthChannel:
        """Re-prove the second factor for an already committed session."""
        self._codes.validate(VerificationType.SECOND_FACTOR, user_id, code)
        log.info("step_up_verified", user_id=user_id, session_id=auth.session_id)
        return replace(auth, verified_at=self._clock.now())

    def requires_step_up(
        self,
        auth: Optional[AuthChannel],
        pending: Optional[VerifyChannel],
        user_id: Optional[str],
    ) -> bool:
        if pending is not None and pending.has_pending_login:
            return True
        if user_id is None:
            return False
        if not self._codes.has_enrollment(VerificationType.SECOND_FACTOR, user_id):
            return False
        age = self._clock.now() - last_verified_at(auth)
        return age > self._recent_verification

    def last_verified_at(self, auth: Optional[AuthChannel]) -> datetime:
        return last_verified_at(auth)
