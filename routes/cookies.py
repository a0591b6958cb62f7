"""
Cookie plumbing for the two client-side channels.

The auth cookie is a browser-session cookie unless the channel carries an
expiry (``remember``), in which case it lives until the session row's
expiration date. The verify cookie always lives for the verify TTL.
"""

from __future__ import annotations

from fastapi import Response

from config import AppSettings
from services.channels import AuthChannel, ChannelCodec, VerifyChannel
from services.step_up import LoginOutcome


def _cookie_kwargs(settings: AppSettings) -> dict:
    return {
        "httponly": True,
        "secure": settings.session.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def set_auth_cookie(
    response: Response, settings: AppSettings, codec: ChannelCodec, channel: AuthChannel
) -> Response:
    response.set_cookie(
        settings.session.auth_cookie_name,
        value=codec.encode_auth(channel),
        expires=channel.expires,
        **_cookie_kwargs(settings),
    )
    return response


def clear_auth_cookie(response: Response, settings: AppSettings) -> Response:
    response.delete_cookie(settings.session.auth_cookie_name, **_cookie_kwargs(settings))
    return response


def set_verify_cookie(
    response: Response, settings: AppSettings, codec: ChannelCodec, channel: VerifyChannel
) -> Response:
    response.set_cookie(
        settings.session.verify_cookie_name,
        value=codec.encode_verify(channel),
        max_age=int(codec.verify_ttl.total_seconds()),
        **_cookie_kwargs(settings),
    )
    return response


def clear_verify_cookie(response: Response, settings: AppSettings) -> Response:
    response.delete_cookie(settings.session.verify_cookie_name, **_cookie_kwargs(settings))
    return response


def apply_login_outcome(
    response: Response, settings: AppSettings, codec: ChannelCodec, outcome: LoginOutcome
) -> Response:
    if outcome.auth is not None:
        set_auth_cookie(response, settings, codec, outcome.auth)
    if outcome.pending is not None:
        set_verify_cookie(response, settings, codec, outcome.pending)
    elif outcome.clear_pending:
        clear_verify_cookie(response, settings)
    return response
