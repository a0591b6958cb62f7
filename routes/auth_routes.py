"""
Authentication endpoints.

POST   /auth/login                   — credentials; commits or parks a step-up
POST   /auth/verify-step-up          — second-factor code for a parked login
POST   /auth/logout                  — destroys the session, clears both cookies
POST   /auth/challenges              — mail a one-shot code (confirmation / reset)
GET    /auth/session                 — who is signed in (null when nobody)
POST   /auth/onboarding/verify       — prove possession of the signup email
POST   /auth/signup                  — create the account for the proven email
POST   /auth/password-reset/verify   — prove possession for a password reset
POST   /auth/password-reset          — store the new password
POST   /auth/reverify                — fresh second-factor proof for this session
POST   /auth/email-change            — mail a code to the new address
POST   /auth/email-change/verify     — commit the new address
POST   /auth/2fa/enable              — stage an authenticator app
POST   /auth/2fa/verify              — activate it with its first code
POST   /auth/2fa/disable             — remove the authenticator
DELETE /auth/user                    — delete the account

Services return outcome values; this module turns them into cookies and
JSON. Requests without a live session get a uniform 401, and a dead auth
cookie is cleared on the way out.

Async endpoints exist only where mail is sent. Their store reads run in a
worker thread so the event loop never waits on MongoDB.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Union

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from config import AppSettings
from dependencies import (
    get_account_service,
    get_auth_channel,
    get_channel_codec,
    get_session_manager,
    get_settings,
    get_step_up_controller,
    get_verify_channel,
)
from errors import LoginFlowAbortedError, NotAuthenticatedError
from routes.cookies import (
    apply_login_outcome,
    clear_auth_cookie,
    clear_verify_cookie,
    set_auth_cookie,
    set_verify_cookie,
)
from schemas.dto.requests.auth import (
    EmailChangeCodeRequest,
    EmailChangeRequest,
    IssueChallengeRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    StepUpCodeRequest,
    VerifyEmailCodeRequest,
)
from schemas.dto.responses.auth import (
    EmailChangeResponse,
    LoginResponse,
    SessionResponse,
    TwoFactorResponse,
)
from schemas.dto.responses.common import MessageResponse
from services.account_service import AccountService
from services.channels import AuthChannel, ChannelCodec, VerifyChannel
from services.session_manager import Authenticated, SessionManager
from services.step_up import LoginOutcome, StepUpController
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _login_response(outcome: LoginOutcome) -> LoginResponse:
    return LoginResponse(
        state=outcome.state.value,
        step_up_required=outcome.step_up_required,
        session_id=None if outcome.step_up_required else outcome.session_id,
    )


def _not_authenticated(settings: AppSettings, revoke: bool) -> JSONResponse:
    resp = JSONResponse(
        status_code=NotAuthenticatedError.status_code,
        content=NotAuthenticatedError("Not authenticated").to_dict(),
    )
    if revoke:
        clear_auth_cookie(resp, settings)
    return resp


def _current_user(
    auth: Optional[AuthChannel], sessions: SessionManager, settings: AppSettings
) -> Union[Authenticated, JSONResponse]:
    result = sessions.authenticate(auth)
    if isinstance(result, Authenticated):
        return result
    return _not_authenticated(settings, result.revoke_client_state)


# ── Login / logout ────────────────────────────────────────────────────────────


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
):
    outcome = accounts.login(body.email, body.password, remember=body.remember)
    apply_login_outcome(response, settings, codec, outcome)
    return _login_response(outcome)


@router.post("/verify-step-up", response_model=LoginResponse)
def verify_step_up(
    body: StepUpCodeRequest,
    response: Response,
    pending: Optional[VerifyChannel] = Depends(get_verify_channel),
    step_up: StepUpController = Depends(get_step_up_controller),
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
):
    try:
        outcome = step_up.submit_step_up_code(pending, body.code)
    except LoginFlowAbortedError as e:
        resp = JSONResponse(status_code=e.status_code, content=e.to_dict())
        return clear_verify_cookie(resp, settings)
    apply_login_outcome(response, settings, codec, outcome)
    return _login_response(outcome)


@router.post("/logout", response_model=MessageResponse)
def logout(
    response: Response,
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    sessions: SessionManager = Depends(get_session_manager),
    settings: AppSettings = Depends(get_settings),
):
    # Clear the cookies even if the row is already gone
    if auth is not None:
        sessions.destroy(auth.session_id)
    clear_auth_cookie(response, settings)
    clear_verify_cookie(response, settings)
    return MessageResponse(success=True)


@router.get("/session", response_model=SessionResponse)
def resolve_session(
    response: Response,
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    pending: Optional[VerifyChannel] = Depends(get_verify_channel),
    sessions: SessionManager = Depends(get_session_manager),
    step_up: StepUpController = Depends(get_step_up_controller),
    settings: AppSettings = Depends(get_settings),
):
    result = sessions.authenticate(auth)
    if not isinstance(result, Authenticated):
        if result.revoke_client_state:
            clear_auth_cookie(response, settings)
        return SessionResponse(
            user_id=None,
            step_up_required=step_up.requires_step_up(None, pending, None),
        )
    return SessionResponse(
        user_id=result.user_id,
        step_up_required=step_up.requires_step_up(auth, pending, result.user_id),
    )


# ── Mailed challenges ─────────────────────────────────────────────────────────


@router.post("/challenges", response_model=MessageResponse, status_code=202)
async def issue_challenge(
    body: IssueChallengeRequest,
    accounts: AccountService = Depends(get_account_service),
):
    if body.type == "email-confirmation":
        sent = await accounts.start_onboarding(body.target)
        if not sent:
            log.warning("challenge_delivery_failed", verification_type=body.type)
    else:
        await accounts.request_password_reset(body.target)
    return MessageResponse(
        success=True, message="If the address can receive mail, a code is on its way."
    )


@router.post("/onboarding/verify", response_model=MessageResponse)
def verify_onboarding(
    body: VerifyEmailCodeRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
):
    channel = accounts.confirm_onboarding(body.email, body.code)
    set_verify_cookie(response, settings, codec, channel)
    return MessageResponse(success=True)


@router.post("/signup", response_model=LoginResponse, status_code=201)
def signup(
    body: SignupRequest,
    response: Response,
    verify: Optional[VerifyChannel] = Depends(get_verify_channel),
    accounts: AccountService = Depends(get_account_service),
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
):
    outcome = accounts.signup(verify, body.name, body.password, remember=body.remember)
    apply_login_outcome(response, settings, codec, outcome)
    return _login_response(outcome)


@router.post("/password-reset/verify", response_model=MessageResponse)
def verify_password_reset(
    body: VerifyEmailCodeRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
):
    channel = accounts.confirm_password_reset(body.email, body.code)
    set_verify_cookie(response, settings, codec, channel)
    return MessageResponse(success=True)


@router.post("/password-reset", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    response: Response,
    verify: Optional[VerifyChannel] = Depends(get_verify_channel),
    accounts: AccountService = Depends(get_account_service),
    settings: AppSettings = Depends(get_settings),
):
    accounts.reset_password(verify, body.password)
    clear_verify_cookie(response, settings)
    return MessageResponse(success=True, message="Password updated")


# ── Signed-in account operations ──────────────────────────────────────────────


@router.post("/reverify", response_model=MessageResponse)
def reverify(
    body: StepUpCodeRequest,
    response: Response,
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    sessions: SessionManager = Depends(get_session_manager),
    step_up: StepUpController = Depends(get_step_up_controller),
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
):
    current = _current_user(auth, sessions, settings)
    if isinstance(current, JSONResponse):
        return current
    refreshed = step_up.reverify(auth, current.user_id, body.code)
    set_auth_cookie(response, settings, codec, refreshed)
    return MessageResponse(success=True)


@router.post("/email-change", response_model=MessageResponse, status_code=202)
async def request_email_change(
    body: EmailChangeRequest,
    response: Response,
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
):
    current = await asyncio.to_thread(_current_user, auth, sessions, settings)
    if isinstance(current, JSONResponse):
        return current
    channel = await accounts.request_email_change(auth, current.user_id, body.new_email)
    set_verify_cookie(response, settings, codec, channel)
    return MessageResponse(success=True, message="A code was sent to the new address")


@router.post("/email-change/verify", response_model=EmailChangeResponse)
async def confirm_email_change(
    body: EmailChangeCodeRequest,
    response: Response,
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    verify: Optional[VerifyChannel] = Depends(get_verify_channel),
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
    settings: AppSettings = Depends(get_settings),
):
    current = await asyncio.to_thread(_current_user, auth, sessions, settings)
    if isinstance(current, JSONResponse):
        return current
    email = await accounts.confirm_email_change(auth, verify, current.user_id, body.code)
    clear_verify_cookie(response, settings)
    return EmailChangeResponse(success=True, email=email)


@router.post("/2fa/enable", response_model=TwoFactorResponse)
def enable_two_factor(
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
    settings: AppSettings = Depends(get_settings),
):
    current = _current_user(auth, sessions, settings)
    if isinstance(current, JSONResponse):
        return current
    enrollment = accounts.enable_two_factor(auth, current.user_id)
    return TwoFactorResponse(secret=enrollment.secret, otpauth_uri=enrollment.uri)


@router.post("/2fa/verify", response_model=MessageResponse)
def confirm_two_factor(
    body: StepUpCodeRequest,
    response: Response,
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
):
    current = _current_user(auth, sessions, settings)
    if isinstance(current, JSONResponse):
        return current
    refreshed = accounts.confirm_two_factor(auth, current.user_id, body.code)
    set_auth_cookie(response, settings, codec, refreshed)
    return MessageResponse(success=True, message="Two-factor authentication enabled")


@router.post("/2fa/disable", response_model=MessageResponse)
def disable_two_factor(
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
    settings: AppSettings = Depends(get_settings),
):
    current = _current_user(auth, sessions, settings)
    if isinstance(current, JSONResponse):
        return current
    accounts.disable_two_factor(auth, current.user_id)
    return MessageResponse(success=True)


@router.delete("/user", response_model=MessageResponse)
def delete_user(
    response: Response,
    auth: Optional[AuthChannel] = Depends(get_auth_channel),
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
    settings: AppSettings = Depends(get_settings),
):
    current = _current_user(auth, sessions, settings)
    if isinstance(current, JSONResponse):
        return current
    accounts.delete_user(current.user_id)
    clear_auth_cookie(response, settings)
    clear_verify_cookie(response, settings)
    return MessageResponse(success=True)
