"""
Response DTOs for authentication endpoints.

LoginResponse        — POST /auth/login, /auth/verify-step-up, /auth/signup
SessionResponse      — GET /auth/session
TwoFactorResponse    — POST /auth/2fa/enable
EmailChangeResponse  — POST /auth/email-change/verify
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class LoginResponse(BaseModel):
    """Where the login stands; ``session_id`` is only present once committed."""

    model_config = ConfigDict(populate_by_name=True)

    state: str
    step_up_required: bool
    session_id: Optional[str] = None


class SessionResponse(BaseModel):
    """Response body for GET /auth/session; ``user_id`` is null when signed out."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = None
    step_up_required: bool = False


class TwoFactorResponse(BaseModel):
    """Provisioning data for an authenticator app."""

    model_config = ConfigDict(populate_by_name=True)

    secret: str
    otpauth_uri: str


class EmailChangeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    email: str
