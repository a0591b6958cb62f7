"""
Cryptographic helpers: password hashing and channel key derivation.

Uses argon2 for passwords (via argon2-cffi). Channel keys are derived from
the application secret with HMAC-SHA256 so that each client-side channel is
signed with its own key.
"""

from __future__ import annotations

import hashlib
import hmac

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_password_hasher = PasswordHasher()


def hash_password(plain_password: str) -> str:
    """Hash *plain_password* with argon2id.

    Returns:
        Argon2 hash string (includes algorithm parameters and salt).
    """
    return _password_hasher.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify *plain_password* against an argon2 *password_hash*.

    Returns:
        ``True`` if the password matches, ``False`` for a wrong password or
        an unreadable hash.
    """
    try:
        return _password_hasher.verify(password_hash, plain_password)
    except (VerificationError, InvalidHashError):
        return False


def derive_key(secret: str, purpose: str) -> bytes:
    """Derive a purpose-bound signing key from the application *secret*."""
    return hmac.new(
        secret.encode("utf-8"), purpose.encode("utf-8"), hashlib.sha256
    ).digest()
