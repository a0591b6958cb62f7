"""
Random identifier and secret generators. Pure, side-effect-free functions.

All generators use cryptographically secure sources.
"""

from __future__ import annotations

import pyotp
from bson import ObjectId


def generate_otp_secret() -> str:
    """Generate a random base32 seed for code derivation (160 bits)."""
    return pyotp.random_base32(length=32)


def generate_session_id() -> ObjectId:
    """Generate a new session id.

    ObjectIds embed their creation second and a counter, so ids sort in
    creation order. The ordering carries no meaning beyond debugging.
    """
    return ObjectId()
