"""
Unit tests for the shared/ utility modules.

Covers:
- shared.crypto          (hash_password, verify_password, derive_key)
- shared.datetime_utils  (ensure_utc, truncate_to_millis, to_bson_datetime,
                          from_timestamp)
- shared.generators      (generate_otp_secret, generate_session_id)
- shared.logging_config  (redact_sensitive_fields)
- shared.clock           (SystemClock)
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from shared.clock import Clock, SystemClock
from shared.crypto import derive_key, hash_password, verify_password
from shared.datetime_utils import (
    EPOCH,
    ensure_utc,
    from_timestamp,
    to_bson_datetime,
    to_timestamp,
    truncate_to_millis,
)
from shared.generators import generate_otp_secret, generate_session_id
from shared.logging_config import redact_sensitive_fields


# ── crypto ────────────────────────────────────────────────────────────────────


class TestPasswordHashing:
    def test_round_trip(self):
        digest = hash_password("s3cret")
        assert digest.startswith("$argon2")
        assert verify_password("s3cret", digest) is True

    def test_wrong_password(self):
        assert verify_password("nope", hash_password("s3cret")) is False

    def test_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_unreadable_hash(self):
        assert verify_password("s3cret", "not-a-hash") is False


class TestDeriveKey:
    def test_purpose_separates_keys(self):
        assert derive_key("secret", "auth-channel") != derive_key("secret", "verify-channel")

    def test_deterministic(self):
        assert derive_key("secret", "auth-channel") == derive_key("secret", "auth-channel")
        assert len(derive_key("secret", "auth-channel")) == 32


# ── datetime_utils ────────────────────────────────────────────────────────────


class TestDatetimeUtils:
    def test_ensure_utc_naive_assumed_utc(self):
        naive = datetime(2026, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_ensure_utc_converts_offsets(self):
        plus_two = datetime(2026, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        result = ensure_utc(plus_two)
        assert result.tzinfo == timezone.utc
        assert result.hour == 12

    def test_ensure_utc_none(self):
        assert ensure_utc(None) is None

    def test_truncate_to_millis(self):
        value = datetime(2026, 1, 1, 0, 0, 0, 987654, tzinfo=timezone.utc)
        assert truncate_to_millis(value).microsecond == 987000

    def test_to_bson_datetime(self):
        value = datetime(2026, 1, 1, 14, 0, 0, 5555, tzinfo=timezone(timedelta(hours=2)))
        assert to_bson_datetime(value) == datetime(2026, 1, 1, 12, 0, 0, 5000)

    def test_timestamp_round_trip(self):
        value = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert from_timestamp(to_timestamp(value)) == value

    @pytest.mark.parametrize("raw", [None, True, "abc", {"a": 1}])
    def test_from_timestamp_rejects(self, raw):
        assert from_timestamp(raw) is None

    def test_epoch(self):
        assert from_timestamp(0) == EPOCH


# ── generators ────────────────────────────────────────────────────────────────


class TestGenerators:
    def test_otp_secret_is_base32(self):
        secret = generate_otp_secret()
        assert len(secret) == 32
        assert len(base64.b32decode(secret)) == 20

    def test_otp_secrets_differ(self):
        assert generate_otp_secret() != generate_otp_secret()

    def test_session_ids_are_ordered(self):
        first = generate_session_id()
        second = generate_session_id()
        assert isinstance(first, ObjectId)
        assert first < second


# ── logging ───────────────────────────────────────────────────────────────────


class TestRedaction:
    def _redact(self, **event):
        return redact_sensitive_fields(None, "info", dict(event))

    @pytest.mark.parametrize(
        "key", ["password", "password_hash", "code", "otp_code", "api_token", "secret"]
    )
    def test_sensitive_keys_redacted(self, key):
        assert self._redact(**{key: "value"})[key] == "***REDACTED***"

    def test_safe_keys_kept(self):
        event = self._redact(event="login_failed", user_id="u1", error_code="code_mismatch")
        assert event == {
            "event": "login_failed",
            "user_id": "u1",
            "error_code": "code_mismatch",
        }


# ── clock ─────────────────────────────────────────────────────────────────────


class TestSystemClock:
    def test_is_aware_utc(self):
        now = SystemClock().now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)

    def test_satisfies_protocol(self):
        assert isinstance(SystemClock(), Clock)
