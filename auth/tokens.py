"""
auth/tokens.py -- Session tokens, CSRF secrets, and password hashing.

Security design decisions:
  Session tokens: 16 bytes from secrets.token_bytes (128 bits of entropy).
       The token is the identity of a session row; the cookie carries it
       base64-encoded. Nothing else about the session is in the cookie.

  CSRF secrets: a second, independent 16 random bytes per session. Never
       placed in a cookie. The client receives it in an API response body and
       echoes it in the X-Grades-CSRF header. A cross-site attacker can make
       the browser send the cookie but cannot read a response body from
       another origin, so it cannot learn the secret.

  Passwords: Argon2id via argon2-cffi's low-level API. Argon2id is memory-hard,
       which makes GPU/ASIC guessing expensive. The raw 64-byte hash and its
       16-byte per-user salt are stored in separate columns; a new salt is
       generated every time a password is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import secrets

from argon2.low_level import Type, hash_secret_raw

TOKEN_BYTES = 16
CSRF_BYTES = 16
SALT_BYTES = 16
HASH_BYTES = 64

# OWASP baseline for Argon2id: 19 MiB, 2 iterations, 1 lane.
_ARGON2_TIME_COST = 2
_ARGON2_MEMORY_COST_KIB = 19 * 1024
_ARGON2_PARALLELISM = 1


# ---------------------------------------------------------------------------
# Token generator
# ---------------------------------------------------------------------------


def generate_session_token() -> bytes:
    return secrets.token_bytes(TOKEN_BYTES)


def generate_csrf_secret() -> bytes:
    return secrets.token_bytes(CSRF_BYTES)


def encode_token(raw: bytes) -> str:
    """Return the standard base64 text form used in cookies and headers."""
    return base64.b64encode(raw).decode("ascii")


def decode_token(value: str) -> bytes | None:
    """Decode a base64 cookie/header value. Returns None if it is not valid base64.

    A malformed value is treated by callers exactly like an unknown token,
    so there is nothing to gain from distinguishing the two.
    """
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def generate_salt() -> bytes:
    return secrets.token_bytes(SALT_BYTES)


def hash_password(plain: str, salt: bytes) -> bytes:
    """Return the raw Argon2id hash of plain under salt."""
    return hash_secret_raw(
        secret=plain.encode("utf-8"),
        salt=salt,
        time_cost=_ARGON2_TIME_COST,
        memory_cost=_ARGON2_MEMORY_COST_KIB,
        parallelism=_ARGON2_PARALLELISM,
        hash_len=HASH_BYTES,
        type=Type.ID,
    )


def verify_password(plain: str, salt: bytes, expected_hash: bytes) -> bool:
    """Recompute the hash with the stored salt and compare in constant time."""
    return hmac.compare_digest(hash_password(plain, salt), expected_hash)


# Timing equalization salt. authenticate() hashes the candidate against this
# when the login name does not exist, so "unknown user" costs the same as
# "wrong password".
DUMMY_SALT: bytes = generate_salt()
