"""
Account flows built on the code engine, session manager and step-up
controller: credential login, onboarding, password reset, email change,
two-factor enrollment and account deletion.

Methods that mail a code are coroutines because delivery is async. The
store client is synchronous, so those coroutines hand their store work to a
worker thread with ``asyncio.to_thread`` and keep the event loop free.

Sensitive mutations require a recent step-up only from accounts that have a
second factor enrolled; an account without one has nothing to step up with.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Optional

from bson import ObjectId

from errors import (
    ConflictError,
    InvalidCredentialsError,
    NotAuthenticatedError,
    ValidationError,
)
from infrastructure.email.protocol import EmailProvider
from repositories.user_repository import UserRepository, normalize_email
from schemas.models.user import UserDoc
from schemas.models.verification import VerificationType
from services.channels import AuthChannel, VerifyChannel
from services.code_engine import CodeEngine
from services.freshness import FreshnessGate
from services.session_manager import SessionManager
from services.step_up import LoginOutcome, StepUpController
from shared.clock import Clock
from shared.crypto import hash_password, verify_password
from shared.logging import get_logger

log = get_logger(__name__)

# Verified against when the email is unknown, so both failure paths cost one
# argon2 verification.
_DUMMY_PASSWORD_HASH = hash_password("stepgate-dummy-password")


@dataclass(frozen=True)
class TwoFactorEnrollment:
    secret: str
    uri: str


class AccountService:
    def __init__(
        self,
        users: UserRepository,
        sessions: SessionManager,
        codes: CodeEngine,
        step_up: StepUpController,
        freshness: FreshnessGate,
        mailer: EmailProvider,
        clock: Clock,
        recent_verification: timedelta = timedelta(hours=2),
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._codes = codes
        self._step_up = step_up
        self._freshness = freshness
        self._mailer = mailer
        self._clock = clock
        self._recent_verification = recent_verification

    def _require_user(self, user_id: str) -> UserDoc:
        user = self._users.get_by_id(ObjectId(user_id))
        if user is None:
            raise NotAuthenticatedError("Not authenticated")
        return user

    # ── Login ────────────────────────────────────────────────────────────────

    def authenticate_credentials(self, email: str, password: str) -> str:
        user = self._users.get_by_email(email)
        if user is None or not user.password_hash:
            verify_password(password, _DUMMY_PASSWORD_HASH)
            log.warning("login_failed", reason="invalid_credentials")
            raise InvalidCredentialsError("Invalid email or password")
        if not verify_password(password, user.password_hash):
            log.warning("login_failed", reason="invalid_credentials", user_id=str(user.id))
            raise InvalidCredentialsError("Invalid email or password")
        return str(user.id)

    def login(self, email: str, password: str, remember: bool = False) -> LoginOutcome:
        user_id = self.authenticate_credentials(email, password)
        return self._step_up.begin_login(user_id, remember=remember)

    # ── Onboarding ───────────────────────────────────────────────────────────

    def _issue_onboarding_code(self, email: str) -> str:
        if self._users.get_by_email(email) is not None:
            raise ConflictError("A user already exists with this email", field="email")
        return self._codes.issue_one_shot(VerificationType.EMAIL_CONFIRMATION, email).code

    async def start_onboarding(self, email: str) -> bool:
        email = normalize_email(email)
        code = await asyncio.to_thread(self._issue_onboarding_code, email)
        return await self._mailer.send_verification_email(email, None, code)

    def confirm_onboarding(self, email: str, code: str) -> VerifyChannel:
        email = normalize_email(email)
        self._codes.validate(VerificationType.EMAIL_CONFIRMATION, email, code)
        return VerifyChannel(onboarding_email=email)

    def signup(
        self,
        verify: Optional[VerifyChannel],
        name: Optional[str],
        password: str,
        remember: bool = False,
    ) -> LoginOutcome:
        if verify is None or not verify.onboarding_email:
            raise ValidationError("Confirm your email address before signing up")
        email = verify.onboarding_email
        if self._users.get_by_email(email) is not None:
            raise ConflictError("A user already exists with this email", field="email")

        now = self._clock.now()
        user = self._users.create(
            UserDoc(
                email=email,
                name=name,
                password_hash=hash_password(password),
                email_confirmed=True,
                created_at=now,
            )
        )
        log.info("user_signed_up", user_id=str(user.id))
        # A brand new account has no second factor, so this commits directly
        outcome = self._step_up.begin_login(str(user.id), remember=remember)
        return LoginOutcome(
            state=outcome.state,
            session_id=outcome.session_id,
            auth=outcome.auth,
            clear_pending=True,
        )

    # ── Password reset ───────────────────────────────────────────────────────

    def _issue_reset_code(self, email: str) -> Optional[tuple[UserDoc, str]]:
        user = self._users.get_by_email(email)
        if user is None:
            log.info("password_reset_requested", user_found=False)
            return None
        issued = self._codes.issue_one_shot(VerificationType.PASSWORD_RESET, user.email)
        log.info("password_reset_requested", user_found=True, user_id=str(user.id))
        return user, issued.code

    async def request_password_reset(self, email: str) -> None:
        """Mail a reset code if the account exists; callers learn nothing either way."""
        found = await asyncio.to_thread(self._issue_reset_code, email)
        if found is None:
            return
        user, code = found
        await self._mailer.send_password_reset_email(user.email, user.name, code)

    def confirm_password_reset(self, email: str, code: str) -> VerifyChannel:
        email = normalize_email(email)
        self._codes.validate(VerificationType.PASSWORD_RESET, email, code)
        return VerifyChannel(reset_password_email=email)

    def reset_password(self, verify: Optional[VerifyChannel], new_password: str) -> None:
        if verify is None or not verify.reset_password_email:
            raise ValidationError("Verify the reset code before choosing a new password")
        user = self._users.get_by_email(verify.reset_password_email)
        if user is None:
            raise ValidationError("Verify the reset code before choosing a new password")
        self._users.update_password_hash(
            user.id, hash_password(new_password), self._clock.now()
        )
        log.info("password_reset_completed", user_id=str(user.id))

    # ── Step-up for sensitive mutations ──────────────────────────────────────

    def require_recent_step_up(self, auth: AuthChannel, user_id: str) -> None:
        """Raise StaleVerificationError if *user_id* has a second factor it has
        not proven within the freshness window."""
        if self._codes.has_enrollment(VerificationType.SECOND_FACTOR, user_id):
            self._freshness.require_recent(auth, self._recent_verification)

    # ── Email change ─────────────────────────────────────────────────────────

    def _issue_email_change_code(
        self, auth: AuthChannel, user_id: str, new_email: str
    ) -> tuple[UserDoc, str]:
        self.require_recent_step_up(auth, user_id)
        user = self._require_user(user_id)
        if new_email == user.email:
            raise ValidationError("This is already your email address", field="email")
        if self._users.get_by_email(new_email) is not None:
            raise ConflictError("This email address is already in use", field="email")

        issued = self._codes.issue_one_shot(VerificationType.EMAIL_CHANGE, new_email)
        log.info("email_change_requested", user_id=user_id)
        return user, issued.code

    async def request_email_change(
        self, auth: AuthChannel, user_id: str, new_email: str
    ) -> VerifyChannel:
        new_email = normalize_email(new_email)
        user, code = await asyncio.to_thread(
            self._issue_email_change_code, auth, user_id, new_email
        )
        await self._mailer.send_email_change_email(new_email, user.name, code)
        return VerifyChannel(new_email=new_email)

    def _commit_email_change(
        self,
        auth: AuthChannel,
        verify: Optional[VerifyChannel],
        user_id: str,
        code: str,
    ) -> UserDoc:
        self.require_recent_step_up(auth, user_id)
        if verify is None or not verify.new_email:
            raise ValidationError(
                "Submit the code on the same device that requested the email change"
            )
        user = self._require_user(user_id)
        self._codes.validate(VerificationType.EMAIL_CHANGE, verify.new_email, code)
        self._users.update_email(user.id, verify.new_email, self._clock.now())
        log.info("email_change_completed", user_id=user_id)
        return user

    async def confirm_email_change(
        self,
        auth: AuthChannel,
        verify: Optional[VerifyChannel],
        user_id: str,
        code: str,
    ) -> str:
        previous = await asyncio.to_thread(
            self._commit_email_change, auth, verify, user_id, code
        )
        await self._mailer.send_email_change_notice(
            previous.email, previous.name, verify.new_email
        )
        return verify.new_email

    # ── Two-factor ───────────────────────────────────────────────────────────

    def enable_two_factor(self, auth: AuthChannel, user_id: str) -> TwoFactorEnrollment:
        """Stage a new authenticator; it takes effect once confirm_two_factor
        accepts a code from it."""
        self._require_user(user_id)
        # Replacing an existing authenticator needs proof of the current one
        self.require_recent_step_up(auth, user_id)
        issued = self._codes.stage_second_factor(user_id)
        log.info("two_factor_staged", user_id=user_id)
        return TwoFactorEnrollment(secret=issued.secret, uri=issued.uri)

    def confirm_two_factor(
        self, auth: AuthChannel, user_id: str, code: str
    ) -> AuthChannel:
        self._require_user(user_id)
        self.require_recent_step_up(auth, user_id)
        self._codes.confirm_second_factor(user_id, code)
        log.info("two_factor_enabled", user_id=user_id)
        # A code from the new authenticator is itself a fresh step-up
        return replace(auth, verified_at=self._clock.now())

    def disable_two_factor(self, auth: AuthChannel, user_id: str) -> None:
        self.require_recent_step_up(auth, user_id)
        self._codes.revoke(VerificationType.SECOND_FACTOR, user_id)
        self._codes.revoke(VerificationType.SECOND_FACTOR_SETUP, user_id)
        log.info("two_factor_disabled", user_id=user_id)

    # ── Deletion ─────────────────────────────────────────────────────────────

    def delete_user(self, user_id: str) -> None:
        """Delete the user together with its sessions and outstanding challenges."""
        user = self._users.get_by_id(ObjectId(user_id))
        self._users.delete(ObjectId(user_id))
        self._sessions.destroy_all_for_user(user_id)
        self._codes.purge(user_id)
        if user is not None:
            self._codes.purge(user.email)
        log.info("user_deleted", user_id=user_id)
