"""
One-time verification code engine.

Issues and validates codes for every verification purpose (email
confirmation, password reset, email change, second factor) against rows of
the `verifications` collection. Knows nothing about sessions.

Lifecycle:
- ``issue`` upserts the row for ``(target, type)``, superseding any earlier
  challenge, and returns the code for the current time window.
- ``validate`` checks a submitted code against the current window and
  ``allowed_skew_windows`` neighbours on either side. A one-shot row
  (``expires_at`` set) is deleted on success; a recurring row is kept.
- Mismatches never mutate the row. Attempt caps are the caller's concern.
"""

from __future__ import annotations

import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from config import VerificationSettings
from errors import ChallengeExpiredError, ChallengeNotFoundError, CodeMismatchError
from repositories.verification_repository import VerificationRepository
from schemas.models.verification import VerificationDoc, VerificationType
from services.totp import CharsetTOTP, resolve_digest
from shared.clock import Clock
from shared.datetime_utils import truncate_to_millis
from shared.generators import generate_otp_secret
from shared.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class IssuedChallenge:
    secret: str
    code: str
    uri: str
    verification: VerificationDoc


@dataclass(frozen=True)
class CodeValidation:
    ok: bool
    secret: Optional[str] = None


class CodeEngine:
    def __init__(
        self,
        verifications: VerificationRepository,
        clock: Clock,
        settings: Optional[VerificationSettings] = None,
        secret_factory: Callable[[], str] = generate_otp_secret,
    ) -> None:
        self._verifications = verifications
        self._clock = clock
        self._settings = settings or VerificationSettings()
        self._secret_factory = secret_factory

    # ── Derivation ───────────────────────────────────────────────────────────

    def _totp(self, doc: VerificationDoc) -> CharsetTOTP:
        return CharsetTOTP(
            doc.secret,
            digits=doc.digits,
            period=doc.period,
            algorithm=doc.algorithm,
            char_set=doc.char_set,
            name=doc.target,
            issuer=self._settings.otp_issuer,
        )

    def derive_code(self, doc: VerificationDoc, at: Optional[datetime] = None) -> str:
        """Return the code *doc* yields for the time window containing *at*."""
        return self._totp(doc).at(at or self._clock.now())

    # ── Operations ───────────────────────────────────────────────────────────

    def issue(
        self,
        type_: VerificationType,
        target: str,
        period: int,
        expires_at: Optional[datetime] = None,
        *,
        digits: Optional[int] = None,
        algorithm: Optional[str] = None,
        char_set: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> IssuedChallenge:
        algorithm = algorithm or self._settings.email_code_algorithm
        resolve_digest(algorithm)

        now = self._clock.now()
        doc = VerificationDoc(
            type=type_,
            target=target,
            secret=secret or self._secret_factory(),
            algorithm=algorithm.upper(),
            digits=digits or self._settings.code_digits,
            period=period,
            char_set=char_set or self._settings.char_set,
            created_at=truncate_to_millis(now),
            expires_at=truncate_to_millis(expires_at) if expires_at else None,
        )
        doc = self._verifications.upsert(doc)

        totp = self._totp(doc)
        log.info(
            "challenge_issued",
            verification_type=type_.value,
            one_shot=doc.is_one_shot,
            period=period,
        )
        return IssuedChallenge(
            secret=doc.secret,
            code=totp.at(now),
            uri=totp.provisioning_uri(),
            verification=doc,
        )

    def issue_one_shot(self, type_: VerificationType, target: str) -> IssuedChallenge:
        """Issue a mailed code that is good for one email-code period."""
        period = self._settings.email_code_period_seconds
        expires_at = self._clock.now() + timedelta(seconds=period)
        return self.issue(type_, target, period, expires_at)

    def enroll_second_factor(
        self, user_id: str, secret: Optional[str] = None
    ) -> IssuedChallenge:
        """Issue a recurring authenticator secret for *user_id*."""
        return self.issue(
            VerificationType.SECOND_FACTOR,
            user_id,
            self._settings.two_factor_period_seconds,
            algorithm=self._settings.two_factor_algorithm,
            char_set=string.digits,
            secret=secret,
        )

    def stage_second_factor(self, user_id: str) -> IssuedChallenge:
        """Issue an authenticator secret that only becomes active once confirmed.

        The staged row has the shape of the recurring one but carries an
        expiry, so it is consumed by the first matching code.
        """
        expires_at = self._clock.now() + timedelta(
            seconds=self._settings.two_factor_setup_ttl_seconds
        )
        return self.issue(
            VerificationType.SECOND_FACTOR_SETUP,
            user_id,
            self._settings.two_factor_period_seconds,
            expires_at,
            algorithm=self._settings.two_factor_algorithm,
            char_set=string.digits,
        )

    def confirm_second_factor(self, user_id: str, code: str) -> IssuedChallenge:
        """Promote a staged authenticator to the enrolled second factor."""
        staged = self.validate(VerificationType.SECOND_FACTOR_SETUP, user_id, code)
        issued = self.enroll_second_factor(user_id, secret=staged.secret)
        log.info("second_factor_confirmed")
        return issued

    def validate(
        self,
        type_: VerificationType,
        target: str,
        submitted_code: str,
        allowed_skew_windows: Optional[int] = None,
    ) -> CodeValidation:
        if allowed_skew_windows is None:
            allowed_skew_windows = self._settings.allowed_skew_windows

        doc = self._verifications.get(type_, target)
        if doc is None:
            log.info(
                "challenge_validation_failed",
                verification_type=type_.value,
                reason="not_found",
            )
            raise ChallengeNotFoundError("No outstanding verification code")

        now = self._clock.now()
        if doc.is_expired(now):
            log.info(
                "challenge_validation_failed",
                verification_type=type_.value,
                reason="expired",
            )
            raise ChallengeExpiredError("Verification code has expired")

        candidate = (submitted_code or "").strip()
        if not candidate or not self._totp(doc).verify(
            candidate, for_time=now, valid_window=allowed_skew_windows
        ):
            log.info(
                "challenge_validation_failed",
                verification_type=type_.value,
                reason="mismatch",
            )
            raise CodeMismatchError("Invalid verification code", field="code")

        # Whoever deletes the one-shot row owns the success; a concurrent
        # submission of the same code loses here.
        if doc.is_one_shot and not self._verifications.delete(type_, target):
            raise ChallengeNotFoundError("No outstanding verification code")

        log.info(
            "challenge_validated",
            verification_type=type_.value,
            consumed=doc.is_one_shot,
        )
        return CodeValidation(ok=True, secret=doc.secret)

    def has_enrollment(self, type_: VerificationType, target: str) -> bool:
        return self._verifications.exists(type_, target)

    def revoke(self, type_: VerificationType, target: str) -> None:
        if self._verifications.delete(type_, target):
            log.info("challenge_revoked", verification_type=type_.value)

    def purge(self, target: str) -> int:
        """Drop every outstanding challenge for *target*, whatever its purpose."""
        count = self._verifications.delete_for_target(target)
        if count:
            log.info("challenges_purged", count=count)
        return count
