"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo import MongoClient
from pymongo.database import Database

from config import AppSettings
from errors import register_error_handlers
from infrastructure.email.protocol import EmailProvider
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient
from repositories.indexes import ensure_indexes
from routes.auth_routes import router as auth_router
from routes.health_routes import router as health_router
from shared.clock import Clock, SystemClock
from shared.logging import get_logger

log = get_logger(__name__)


def create_app(
    settings: Optional[AppSettings] = None,
    database: Optional[Database] = None,
    clock: Optional[Clock] = None,
    mailer: Optional[EmailProvider] = None,
) -> FastAPI:
    """Create and return a fully configured FastAPI application.

    ``database``, ``clock`` and ``mailer`` replace the production handles;
    tests pass a mongomock database, a fixed clock and a mock mailer.
    """
    if settings is None:
        settings = AppSettings()

    if not settings.secret_key:
        raise RuntimeError("SECRET_KEY must be set")

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: Optional[MongoClient] = None
        db = database
        if db is None:
            mongo_client = MongoClient(settings.db.mongodb_uri, tz_aware=False)
            db = mongo_client[settings.db.db_name]
        ensure_indexes(db)

        http_client: Optional[HttpClient] = None
        email_provider = mailer
        if email_provider is None:
            http_client = HttpClient(user_agent=settings.app_name)
            email_provider = ZeptoMailProvider(
                settings.email,
                http_client,
                app_url=settings.app_url,
                app_name=settings.app_name,
                code_ttl_minutes=settings.verification.email_code_period_seconds // 60,
            )

        app.state.settings = settings
        app.state.db = db
        app.state.clock = clock if clock is not None else SystemClock()
        app.state.mailer = email_provider
        log.info("app_started", env=settings.env, db_name=db.name)

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        if http_client is not None:
            await http_client.aclose()
        if mongo_client is not None:
            mongo_client.close()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(auth_router)

    return app
