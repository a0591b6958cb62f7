"""
Shared fixtures: a controllable clock, an in-memory MongoDB (mongomock) with
the production indexes, and the service graph wired around them.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count
from unittest.mock import AsyncMock

import mongomock
import pytest

from config import VerificationSettings
from repositories import SessionRepository, UserRepository, VerificationRepository
from repositories.indexes import ensure_indexes
from services.account_service import AccountService
from services.code_engine import CodeEngine
from services.freshness import FreshnessGate
from services.session_manager import SessionManager
from services.step_up import StepUpController

SESSION_TTL = timedelta(days=30)
RECENT_VERIFICATION = timedelta(hours=2)


class FixedClock:
    """Clock pinned to a moment; tests move it explicitly."""

    def __init__(self, start: datetime) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment


def sequential_secrets():
    """Deterministic, distinct base32 secrets for the code engine."""
    seq = count()
    alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

    def factory() -> str:
        n = next(seq)
        chars = []
        for _ in range(32):
            n, i = divmod(n, 32)
            chars.append(alphabet[i])
        return "".join(chars)

    return factory


@pytest.fixture
def clock():
    # Aligned to a 10-minute boundary so period arithmetic is predictable
    return FixedClock(datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def mock_db():
    db = mongomock.MongoClient().db
    ensure_indexes(db)
    return db


@pytest.fixture
def verification_settings():
    return VerificationSettings()


@pytest.fixture
def code_engine(mock_db, clock, verification_settings):
    return CodeEngine(
        VerificationRepository(mock_db),
        clock,
        verification_settings,
        secret_factory=sequential_secrets(),
    )


@pytest.fixture
def session_manager(mock_db, clock):
    return SessionManager(SessionRepository(mock_db), clock)


@pytest.fixture
def step_up(session_manager, code_engine, clock):
    return StepUpController(
        session_manager,
        code_engine,
        clock,
        session_ttl=SESSION_TTL,
        recent_verification=RECENT_VERIFICATION,
    )


@pytest.fixture
def freshness(clock):
    return FreshnessGate(clock, RECENT_VERIFICATION)


@pytest.fixture
def mailer():
    m = AsyncMock()
    m.send_verification_email.return_value = True
    m.send_password_reset_email.return_value = True
    m.send_email_change_email.return_value = True
    m.send_email_change_notice.return_value = True
    return m


@pytest.fixture
def account_service(
    mock_db, session_manager, code_engine, step_up, freshness, mailer, clock
):
    return AccountService(
        UserRepository(mock_db),
        session_manager,
        code_engine,
        step_up,
        freshness,
        mailer,
        clock,
        recent_verification=RECENT_VERIFICATION,
    )
