"""
Client-side channels: the signed tokens a client carries between requests.

Two independent channels exist:

- the *auth* channel binds a committed session id to the client, plus the
  time of the last successful step-up (``verified_at``);
- the *verify* channel parks short-lived facts between requests: the
  session waiting for step-up and its ``remember`` flag, or an email
  address whose possession the client has just proved.

Each channel is an HS256 JWT signed with its own key derived from the
application secret and carrying its own audience, so a token minted for one
channel never decodes as the other. Expiry is checked against the injected
clock, not the wall clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import jwt

from shared.clock import Clock
from shared.crypto import derive_key
from shared.datetime_utils import from_timestamp, to_timestamp
from shared.logging import get_logger

log = get_logger(__name__)

_ALGORITHM = "HS256"
_AUTH_AUDIENCE = "auth-channel"
_VERIFY_AUDIENCE = "verify-channel"


@dataclass(frozen=True)
class AuthChannel:
    session_id: str
    verified_at: Optional[datetime] = None
    # None means the binding lives only as long as the browser session
    expires: Optional[datetime] = None


@dataclass(frozen=True)
class VerifyChannel:
    unverified_session_id: Optional[str] = None
    remember: bool = False
    onboarding_email: Optional[str] = None
    reset_password_email: Optional[str] = None
    new_email: Optional[str] = None

    @property
    def has_pending_login(self) -> bool:
        return bool(self.unverified_session_id)


class ChannelCodec:
    def __init__(
        self,
        secret: str,
        clock: Clock,
        verify_ttl: timedelta = timedelta(minutes=10),
        issuer: str = "stepgate",
    ) -> None:
        if not secret:
            raise RuntimeError("SECRET_KEY must be set to sign client channels")
        self._auth_key = derive_key(secret, _AUTH_AUDIENCE)
        self._verify_key = derive_key(secret, _VERIFY_AUDIENCE)
        self._clock = clock
        self._verify_ttl = verify_ttl
        self._issuer = issuer

    # ── Shared JWT plumbing ──────────────────────────────────────────────────

    def _encode(
        self, claims: dict, key: bytes, audience: str, expires: Optional[datetime]
    ) -> str:
        now = self._clock.now()
        payload = {
            "iss": self._issuer,
            "aud": audience,
            "iat": int(to_timestamp(now)),
            **{k: v for k, v in claims.items() if v is not None},
        }
        if expires is not None:
            payload["exp"] = int(to_timestamp(expires))
        return jwt.encode(payload, key, algorithm=_ALGORITHM)

    def _decode(
        self, token: Optional[str], key: bytes, audience: str
    ) -> Optional[dict[str, Any]]:
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[_ALGORITHM],
                audience=audience,
                issuer=self._issuer,
                options={"verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as e:
            log.info("channel_rejected", audience=audience, reason=type(e).__name__)
            return None

        exp = from_timestamp(claims.get("exp"))
        if exp is not None and self._clock.now() >= exp:
            log.info("channel_rejected", audience=audience, reason="expired")
            return None
        return claims

    # ── Auth channel ─────────────────────────────────────────────────────────

    def encode_auth(self, channel: AuthChannel) -> str:
        vat = None
        if channel.verified_at is not None:
            vat = int(to_timestamp(channel.verified_at))
        claims = {"sid": channel.session_id, "vat": vat}
        return self._encode(claims, self._auth_key, _AUTH_AUDIENCE, channel.expires)

    def decode_auth(self, token: Optional[str]) -> Optional[AuthChannel]:
        claims = self._decode(token, self._auth_key, _AUTH_AUDIENCE)
        if claims is None or not isinstance(claims.get("sid"), str):
            return None
        return AuthChannel(
            session_id=claims["sid"],
            verified_at=from_timestamp(claims.get("vat")),
            expires=from_timestamp(claims.get("exp")),
        )

    # ── Verify channel ───────────────────────────────────────────────────────

    def encode_verify(self, channel: VerifyChannel) -> str:
        claims = {
            "usid": channel.unverified_session_id,
            "rem": channel.remember or None,
            "onb": channel.onboarding_email,
            "rst": channel.reset_password_email,
            "nem": channel.new_email,
        }
        expires = self._clock.now() + self._verify_ttl
        return self._encode(claims, self._verify_key, _VERIFY_AUDIENCE, expires)

    def decode_verify(self, token: Optional[str]) -> Optional[VerifyChannel]:
        claims = self._decode(token, self._verify_key, _VERIFY_AUDIENCE)
        if claims is None:
            return None
        return VerifyChannel(
            unverified_session_id=claims.get("usid"),
            remember=bool(claims.get("rem", False)),
            onboarding_email=claims.get("onb"),
            reset_password_email=claims.get("rst"),
            new_email=claims.get("nem"),
        )

    @property
    def verify_ttl(self) -> timedelta:
        return self._verify_ttl
