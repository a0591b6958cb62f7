"""
Request DTOs for authentication endpoints.

LoginRequest                 — POST /auth/login
StepUpCodeRequest            — POST /auth/verify-step-up, POST /auth/reverify,
                               POST /auth/2fa/verify
IssueChallengeRequest        — POST /auth/challenges
VerifyEmailCodeRequest       — POST /auth/onboarding/verify, /auth/password-reset/verify
SignupRequest                — POST /auth/signup
ResetPasswordRequest         — POST /auth/password-reset
EmailChangeRequest           — POST /auth/email-change
EmailChangeCodeRequest       — POST /auth/email-change/verify
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    remember: bool = False


class StepUpCodeRequest(BaseModel):
    """Request body carrying a code from the user's authenticator app."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(min_length=1, max_length=16)


class IssueChallengeRequest(BaseModel):
    """Request body for POST /auth/challenges.

    Only mailed one-shot purposes can be requested anonymously; email change
    and two-factor enrollment have their own authenticated endpoints.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["email-confirmation", "password-reset"]
    target: EmailStr


class VerifyEmailCodeRequest(BaseModel):
    """Request body pairing a mailed code with the address it was sent to."""

    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    code: str = Field(min_length=1, max_length=16)


class SignupRequest(BaseModel):
    """Request body for POST /auth/signup (email comes from the verify channel)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, max_length=120)
    password: str = Field(min_length=1)
    remember: bool = False


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/password-reset."""

    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(min_length=1)


class EmailChangeRequest(BaseModel):
    """Request body for POST /auth/email-change."""

    model_config = ConfigDict(populate_by_name=True)

    new_email: EmailStr


class EmailChangeCodeRequest(BaseModel):
    """Request body for POST /auth/email-change/verify."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(min_length=1, max_length=16)
