"""Unit tests for the account flows (onboarding, reset, email change, 2FA)."""

import threading
from datetime import timedelta

import pytest
from bson import ObjectId

from errors import (
    ChallengeNotFoundError,
    CodeMismatchError,
    ConflictError,
    InvalidCredentialsError,
    NotAuthenticatedError,
    StaleVerificationError,
    ValidationError,
)
from repositories import UserRepository, VerificationRepository
from schemas.models.user import UserDoc
from schemas.models.verification import VerificationType
from services.channels import AuthChannel, VerifyChannel
from services.step_up import LoginState
from shared.crypto import hash_password, verify_password

EMAIL = "alice@example.com"
PASSWORD = "correct horse battery staple"


@pytest.fixture
def user(mock_db, clock):
    return UserRepository(mock_db).create(
        UserDoc(
            email=EMAIL,
            name="Alice",
            password_hash=hash_password(PASSWORD),
            email_confirmed=True,
            created_at=clock.now(),
        )
    )


@pytest.fixture
def fresh_auth(clock):
    return AuthChannel(session_id=str(ObjectId()), verified_at=clock.now())


def _mailed_code(mailer_method) -> str:
    args, _ = mailer_method.call_args
    return args[2]


# ── Login ─────────────────────────────────────────────────────────────────────


class TestLogin:
    def test_valid_credentials(self, account_service, user):
        outcome = account_service.login(EMAIL, PASSWORD)
        assert outcome.state is LoginState.COMMITTED

    def test_email_is_case_insensitive(self, account_service, user):
        user_id = account_service.authenticate_credentials("  ALICE@example.com ", PASSWORD)
        assert user_id == str(user.id)

    def test_wrong_password(self, account_service, user):
        with pytest.raises(InvalidCredentialsError) as wrong:
            account_service.login(EMAIL, "nope")
        with pytest.raises(InvalidCredentialsError) as unknown:
            account_service.login("nobody@example.com", "nope")
        assert wrong.value.to_dict() == unknown.value.to_dict()

    def test_two_factor_user_gets_step_up(self, account_service, code_engine, user):
        code_engine.enroll_second_factor(str(user.id))
        outcome = account_service.login(EMAIL, PASSWORD, remember=True)
        assert outcome.state is LoginState.PENDING_STEP_UP
        assert outcome.pending.remember is True


# ── Onboarding ────────────────────────────────────────────────────────────────


class TestOnboarding:
    async def test_full_signup(self, account_service, mailer, mock_db, session_manager):
        assert await account_service.start_onboarding("New@Example.com") is True
        code = _mailed_code(mailer.send_verification_email)
        assert mailer.send_verification_email.call_args.args[0] == "new@example.com"

        verify = account_service.confirm_onboarding("new@example.com", code)
        assert verify == VerifyChannel(onboarding_email="new@example.com")

        outcome = account_service.signup(verify, "Newbie", "hunter22")
        assert outcome.state is LoginState.COMMITTED
        assert outcome.clear_pending is True
        created = UserRepository(mock_db).get_by_email("new@example.com")
        assert created.email_confirmed is True
        assert verify_password("hunter22", created.password_hash)
        assert session_manager.resolve(outcome.session_id) == str(created.id)

    async def test_store_work_runs_off_the_event_loop(
        self, account_service, code_engine, mocker
    ):
        loop_thread = threading.get_ident()
        seen = []
        issue = code_engine.issue_one_shot

        def recording(*args, **kwargs):
            seen.append(threading.get_ident())
            return issue(*args, **kwargs)

        mocker.patch.object(code_engine, "issue_one_shot", side_effect=recording)
        assert await account_service.start_onboarding("new@example.com") is True
        assert seen and seen[0] != loop_thread

    async def test_existing_email_rejected(self, account_service, user, mailer):
        with pytest.raises(ConflictError):
            await account_service.start_onboarding(EMAIL)
        mailer.send_verification_email.assert_not_awaited()

    async def test_code_is_single_use(self, account_service, mailer):
        await account_service.start_onboarding("new@example.com")
        code = _mailed_code(mailer.send_verification_email)
        account_service.confirm_onboarding("new@example.com", code)
        with pytest.raises(ChallengeNotFoundError):
            account_service.confirm_onboarding("new@example.com", code)

    @pytest.mark.parametrize(
        "verify", [None, VerifyChannel(reset_password_email="new@example.com")]
    )
    def test_signup_requires_confirmed_email(self, account_service, verify):
        with pytest.raises(ValidationError):
            account_service.signup(verify, "Newbie", "hunter22")

    def test_signup_race_on_email(self, account_service, user):
        with pytest.raises(ConflictError):
            account_service.signup(
                VerifyChannel(onboarding_email=EMAIL), "Alice", "hunter22"
            )


# ── Password reset ────────────────────────────────────────────────────────────


class TestPasswordReset:
    async def test_full_reset(self, account_service, mailer, user, mock_db):
        await account_service.request_password_reset(EMAIL)
        code = _mailed_code(mailer.send_password_reset_email)
        verify = account_service.confirm_password_reset(EMAIL, code)
        account_service.reset_password(verify, "new-password")

        stored = UserRepository(mock_db).get_by_email(EMAIL)
        assert verify_password("new-password", stored.password_hash)
        assert stored.updated_at is not None
        account_service.login(EMAIL, "new-password")

    async def test_unknown_email_is_silent(self, account_service, mailer, mock_db):
        await account_service.request_password_reset("nobody@example.com")
        mailer.send_password_reset_email.assert_not_awaited()
        assert mock_db.verifications.count_documents({}) == 0

    async def test_wrong_code(self, account_service, mailer, user):
        await account_service.request_password_reset(EMAIL)
        code = _mailed_code(mailer.send_password_reset_email)
        wrong = "000000" if code != "000000" else "111111"
        with pytest.raises(CodeMismatchError):
            account_service.confirm_password_reset(EMAIL, wrong)

    def test_reset_requires_verified_channel(self, account_service, user):
        with pytest.raises(ValidationError):
            account_service.reset_password(
                VerifyChannel(onboarding_email=EMAIL), "new-password"
            )


# ── Email change ──────────────────────────────────────────────────────────────


class TestEmailChange:
    async def test_full_change(self, account_service, mailer, user, fresh_auth, mock_db):
        verify = await account_service.request_email_change(
            fresh_auth, str(user.id), "Alice.New@example.com"
        )
        assert verify == VerifyChannel(new_email="alice.new@example.com")
        code = _mailed_code(mailer.send_email_change_email)

        email = await account_service.confirm_email_change(
            fresh_auth, verify, str(user.id), code
        )
        assert email == "alice.new@example.com"
        assert UserRepository(mock_db).get_by_id(user.id).email == email
        mailer.send_email_change_notice.assert_awaited_once_with(
            EMAIL, "Alice", "alice.new@example.com"
        )

    async def test_without_second_factor_no_step_up_needed(
        self, account_service, mailer, user, mock_db
    ):
        never_verified = AuthChannel(session_id=str(ObjectId()))
        verify = await account_service.request_email_change(
            never_verified, str(user.id), "other@example.com"
        )
        code = _mailed_code(mailer.send_email_change_email)
        await account_service.confirm_email_change(
            never_verified, verify, str(user.id), code
        )
        assert UserRepository(mock_db).get_by_id(user.id).email == "other@example.com"

    async def test_requires_recent_step_up(
        self, account_service, code_engine, user, clock, mailer
    ):
        code_engine.enroll_second_factor(str(user.id))
        stale = AuthChannel(session_id=str(ObjectId()), verified_at=clock.now())
        clock.advance(hours=3)
        with pytest.raises(StaleVerificationError):
            await account_service.request_email_change(
                stale, str(user.id), "other@example.com"
            )
        mailer.send_email_change_email.assert_not_awaited()

    async def test_never_verified_is_stale(self, account_service, code_engine, user):
        code_engine.enroll_second_factor(str(user.id))
        with pytest.raises(StaleVerificationError):
            await account_service.request_email_change(
                AuthChannel(session_id="s"), str(user.id), "other@example.com"
            )

    async def test_same_email_rejected(self, account_service, user, fresh_auth):
        with pytest.raises(ValidationError):
            await account_service.request_email_change(fresh_auth, str(user.id), EMAIL)

    async def test_taken_email_rejected(self, account_service, user, fresh_auth, mock_db, clock):
        UserRepository(mock_db).create(
            UserDoc(email="bob@example.com", created_at=clock.now())
        )
        with pytest.raises(ConflictError):
            await account_service.request_email_change(
                fresh_auth, str(user.id), "bob@example.com"
            )

    async def test_confirm_needs_verify_channel(self, account_service, user, fresh_auth):
        with pytest.raises(ValidationError):
            await account_service.confirm_email_change(
                fresh_auth, None, str(user.id), "123456"
            )

    async def test_deleted_user(self, account_service, fresh_auth):
        with pytest.raises(NotAuthenticatedError):
            await account_service.request_email_change(
                fresh_auth, str(ObjectId()), "other@example.com"
            )


# ── Two-factor ────────────────────────────────────────────────────────────────


def _confirm(account_service, code_engine, mock_db, auth, user_id):
    staged = VerificationRepository(mock_db).get(
        VerificationType.SECOND_FACTOR_SETUP, user_id
    )
    code = code_engine.derive_code(staged)
    return account_service.confirm_two_factor(auth, user_id, code)


class TestTwoFactor:
    def test_enable_only_stages(self, account_service, code_engine, user):
        enrollment = account_service.enable_two_factor(
            AuthChannel(session_id="s"), str(user.id)
        )
        assert enrollment.uri.startswith("otpauth://totp/")
        user_id = str(user.id)
        assert code_engine.has_enrollment(VerificationType.SECOND_FACTOR_SETUP, user_id)
        assert not code_engine.has_enrollment(VerificationType.SECOND_FACTOR, user_id)

    def test_unconfirmed_enrollment_does_not_gate_login(self, account_service, user):
        account_service.enable_two_factor(AuthChannel(session_id="s"), str(user.id))
        assert account_service.login(EMAIL, PASSWORD).state is LoginState.COMMITTED

    def test_confirm_activates_and_stamps_channel(
        self, account_service, code_engine, user, mock_db, clock
    ):
        auth = AuthChannel(session_id="s")
        enrollment = account_service.enable_two_factor(auth, str(user.id))
        refreshed = _confirm(account_service, code_engine, mock_db, auth, str(user.id))

        assert refreshed.verified_at == clock.now()
        enrolled = VerificationRepository(mock_db).get(
            VerificationType.SECOND_FACTOR, str(user.id)
        )
        assert enrolled.secret == enrollment.secret
        assert enrolled.expires_at is None
        assert account_service.login(EMAIL, PASSWORD).state is LoginState.PENDING_STEP_UP

    def test_confirm_with_wrong_code(self, account_service, code_engine, user, mock_db):
        account_service.enable_two_factor(AuthChannel(session_id="s"), str(user.id))
        staged = VerificationRepository(mock_db).get(
            VerificationType.SECOND_FACTOR_SETUP, str(user.id)
        )
        wrong = "000000" if code_engine.derive_code(staged) != "000000" else "111111"
        with pytest.raises(CodeMismatchError):
            account_service.confirm_two_factor(
                AuthChannel(session_id="s"), str(user.id), wrong
            )
        assert not code_engine.has_enrollment(VerificationType.SECOND_FACTOR, str(user.id))

    def test_confirm_without_staging(self, account_service, user):
        with pytest.raises(ChallengeNotFoundError):
            account_service.confirm_two_factor(
                AuthChannel(session_id="s"), str(user.id), "123456"
            )

    def test_replacing_enrollment_needs_step_up(self, account_service, code_engine, user):
        code_engine.enroll_second_factor(str(user.id))
        with pytest.raises(StaleVerificationError):
            account_service.enable_two_factor(AuthChannel(session_id="s"), str(user.id))

    def test_replacing_enrollment_when_fresh(
        self, account_service, code_engine, user, fresh_auth, mock_db
    ):
        first = code_engine.enroll_second_factor(str(user.id))
        second = account_service.enable_two_factor(fresh_auth, str(user.id))
        assert first.secret != second.secret
        # The old authenticator stays active until the new one is confirmed
        enrolled = VerificationRepository(mock_db).get(
            VerificationType.SECOND_FACTOR, str(user.id)
        )
        assert enrolled.secret == first.secret

        _confirm(account_service, code_engine, mock_db, fresh_auth, str(user.id))
        enrolled = VerificationRepository(mock_db).get(
            VerificationType.SECOND_FACTOR, str(user.id)
        )
        assert enrolled.secret == second.secret

    def test_disable(self, account_service, code_engine, user, fresh_auth, mock_db):
        code_engine.enroll_second_factor(str(user.id))
        account_service.enable_two_factor(fresh_auth, str(user.id))
        account_service.disable_two_factor(fresh_auth, str(user.id))
        assert mock_db.verifications.count_documents({}) == 0

    def test_disable_requires_step_up(self, account_service, code_engine, user):
        code_engine.enroll_second_factor(str(user.id))
        with pytest.raises(StaleVerificationError):
            account_service.disable_two_factor(AuthChannel(session_id="s"), str(user.id))


# ── Deletion ──────────────────────────────────────────────────────────────────


class TestDeleteUser:
    def test_cascades(self, account_service, session_manager, code_engine, user, mock_db):
        user_id = str(user.id)
        code_engine.enroll_second_factor(user_id)
        code_engine.issue_one_shot(VerificationType.PASSWORD_RESET, EMAIL)
        sessions = [session_manager.create(user_id, timedelta(days=1)) for _ in range(2)]

        account_service.delete_user(user_id)

        assert UserRepository(mock_db).get_by_id(user.id) is None
        assert all(session_manager.resolve(str(s.id)) is None for s in sessions)
        verifications = VerificationRepository(mock_db)
        assert verifications.get(VerificationType.SECOND_FACTOR, user_id) is None
        assert mock_db.verifications.count_documents({}) == 0
