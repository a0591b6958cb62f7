"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

Decision on secret key env var: kept as SECRET_KEY, but SESSION_SECRET is
also accepted as an alias for older deployments (handled in AppSettings via
model_validator). The secret signs both client-side channels.
"""

from __future__ import annotations

import string
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "stepgate"


class SessionSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Server-side lifetime of a session row, fixed at creation
    session_ttl_seconds: int = 60 * 60 * 24 * 30

    auth_cookie_name: str = "auth_session"
    verify_cookie_name: str = "verify_session"

    # Lifetime of the pending step-up / verify channel
    verify_ttl_seconds: int = 600
    cookie_secure: bool = True


class VerificationSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    otp_issuer: str = "stepgate"

    email_code_period_seconds: int = 600
    email_code_algorithm: str = "SHA256"

    two_factor_period_seconds: int = 30
    two_factor_algorithm: str = "SHA1"  # what authenticator apps expect
    # How long a freshly scanned authenticator has to produce its first code
    two_factor_setup_ttl_seconds: int = 600

    code_digits: int = 6
    char_set: str = string.digits
    allowed_skew_windows: int = 1

    # Freshness window for sensitive account mutations
    recent_verification_seconds: int = 60 * 60 * 2


class EmailSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    zepto_api_token: str = ""
    zepto_from_email: str = "noreply@stepgate.dev"
    zepto_from_name: str = "stepgate"


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    secret_key: str = ""
    session_secret: str = ""  # legacy alias
    env: str = "development"
    app_url: str = "http://localhost:8000"
    app_name: str = "stepgate"

    cors_origins: list[str] = ["*"]

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    session: Optional[SessionSettings] = None
    verification: Optional[VerificationSettings] = None
    email: Optional[EmailSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs_and_secret(self) -> "AppSettings":
        if not self.secret_key and self.session_secret:
            self.secret_key = self.session_secret

        if self.db is None:
            self.db = DatabaseSettings()
        if self.session is None:
            self.session = SessionSettings()
        if self.verification is None:
            self.verification = VerificationSettings()
        if self.email is None:
            self.email = EmailSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()

        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"
