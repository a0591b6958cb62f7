"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain functions used with
FastAPI's Depends() system. Long-lived handles (settings, database, clock,
mailer) live on app.state; the services themselves are cheap and are built
per request around those handles.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request
from pymongo.database import Database

from config import AppSettings
from infrastructure.email.protocol import EmailProvider
from repositories import SessionRepository, UserRepository, VerificationRepository
from services.account_service import AccountService
from services.channels import AuthChannel, ChannelCodec, VerifyChannel
from services.code_engine import CodeEngine
from services.freshness import FreshnessGate
from services.session_manager import SessionManager
from services.step_up import StepUpController
from shared.clock import Clock


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


def get_db(request: Request) -> Database:
    """Return the MongoDB database from app.state."""
    return request.app.state.db


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_mailer(request: Request) -> EmailProvider:
    return request.app.state.mailer


def get_channel_codec(
    settings: AppSettings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> ChannelCodec:
    return ChannelCodec(
        settings.secret_key,
        clock,
        verify_ttl=timedelta(seconds=settings.session.verify_ttl_seconds),
        issuer=settings.app_name,
    )


def get_code_engine(
    db: Database = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: AppSettings = Depends(get_settings),
) -> CodeEngine:
    return CodeEngine(VerificationRepository(db), clock, settings.verification)


def get_session_manager(
    db: Database = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SessionManager:
    return SessionManager(SessionRepository(db), clock)


def get_freshness_gate(
    clock: Clock = Depends(get_clock),
    settings: AppSettings = Depends(get_settings),
) -> FreshnessGate:
    return FreshnessGate(
        clock,
        timedelta(seconds=settings.verification.recent_verification_seconds),
    )


def get_step_up_controller(
    sessions: SessionManager = Depends(get_session_manager),
    codes: CodeEngine = Depends(get_code_engine),
    clock: Clock = Depends(get_clock),
    settings: AppSettings = Depends(get_settings),
) -> StepUpController:
    return StepUpController(
        sessions,
        codes,
        clock,
        session_ttl=timedelta(seconds=settings.session.session_ttl_seconds),
        recent_verification=timedelta(
            seconds=settings.verification.recent_verification_seconds
        ),
    )


def get_account_service(
    db: Database = Depends(get_db),
    sessions: SessionManager = Depends(get_session_manager),
    codes: CodeEngine = Depends(get_code_engine),
    step_up: StepUpController = Depends(get_step_up_controller),
    freshness: FreshnessGate = Depends(get_freshness_gate),
    mailer: EmailProvider = Depends(get_mailer),
    clock: Clock = Depends(get_clock),
    settings: AppSettings = Depends(get_settings),
) -> AccountService:
    return AccountService(
        UserRepository(db),
        sessions,
        codes,
        step_up,
        freshness,
        mailer,
        clock,
        recent_verification=timedelta(
            seconds=settings.verification.recent_verification_seconds
        ),
    )


def get_auth_channel(
    request: Request,
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
) -> Optional[AuthChannel]:
    return codec.decode_auth(request.cookies.get(settings.session.auth_cookie_name))


def get_verify_channel(
    request: Request,
    codec: ChannelCodec = Depends(get_channel_codec),
    settings: AppSettings = Depends(get_settings),
) -> Optional[VerifyChannel]:
    return codec.decode_verify(request.cookies.get(settings.session.verify_cookie_name))
