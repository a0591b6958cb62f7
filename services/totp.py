"""
Time-based code derivation on top of pyotp.

``CharsetTOTP`` is a ``pyotp.TOTP`` whose truncated HMAC value can be rendered
in any alphabet. With the decimal alphabet the output is plain RFC 6238,
which is what authenticator apps compute.
"""

from __future__ import annotations

import hashlib
import hmac
import string
from datetime import datetime
from typing import Any, Callable, Optional

import pyotp

ALGORITHMS: dict[str, Callable[..., Any]] = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}


def resolve_digest(algorithm: str) -> Callable[..., Any]:
    try:
        return ALGORITHMS[algorithm.upper()]
    except KeyError:
        raise ValueError(f"Unsupported code algorithm: {algorithm!r}") from None


class CharsetTOTP(pyotp.TOTP):
    def __init__(
        self,
        secret: str,
        *,
        digits: int,
        period: int,
        algorithm: str,
        char_set: str = string.digits,
        name: Optional[str] = None,
        issuer: Optional[str] = None,
    ) -> None:
        self.char_set = char_set
        super().__init__(
            secret,
            digits=digits,
            digest=resolve_digest(algorithm),
            name=name,
            issuer=issuer,
            interval=period,
        )

    def generate_otp(self, input: int) -> str:
        if self.char_set == string.digits:
            return super().generate_otp(input)
        if input < 0:
            raise ValueError("input must be positive integer")

        mac = bytearray(
            hmac.new(
                self.byte_secret(), self.int_to_bytestring(input), self.digest
            ).digest()
        )
        offset = mac[-1] & 0x0F
        value = (
            (mac[offset] & 0x7F) << 24
            | (mac[offset + 1] & 0xFF) << 16
            | (mac[offset + 2] & 0xFF) << 8
            | (mac[offset + 3] & 0xFF)
        )

        base = len(self.char_set)
        value %= base**self.digits
        chars = []
        for _ in range(self.digits):
            value, index = divmod(value, base)
            chars.append(self.char_set[index])
        return "".join(reversed(chars))

    def counter(self, for_time: datetime) -> int:
        """The time-step index ``floor(unix_time / period)`` for *for_time*."""
        return self.timecode(for_time)
