"""
auth/hashing.py -- Password and API key hashing, API key generation.

Passwords: bcrypt directly (no passlib wrapper; its wrap-bug self test
    hashes a password longer than 72 bytes, which bcrypt 5.x rejects).
    Older bcrypt releases silently ignore everything past byte 72, so two
    passwords sharing a prefix would verify as equal. Nothing is truncated
    here: callers reject such passwords up front (see password_too_long),
    hash_password refuses them, and verify_password reports a mismatch,
    since no stored hash can have been made from one.

API keys: "bm_" + 32 characters from [A-Za-z0-9] via secrets.choice(), which
    draws with secrets.randbelow() -- uniform, no modulo bias. Keys are stored
    as bcrypt hashes at a fixed cost; the raw value is shown to the caller
    once and is unrecoverable afterwards.

Failure contract:
    hash_password / hash_api_key raise HashingError on internal failure or
    on input over MAX_PASSWORD_BYTES.
    verify_password returns False on mismatch and raises HashingError only
    when the stored hash itself is malformed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
import string
from functools import lru_cache

import bcrypt

API_KEY_PREFIX = "bm_"
API_KEY_LENGTH = 32
API_KEY_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
API_KEY_COST = 12

MAX_PASSWORD_BYTES = 72


class HashingError(Exception):
    """bcrypt failed for a reason not attributable to a wrong password."""


def password_too_long(plain: str) -> bool:
    """True if plain is longer than bcrypt can hash without truncation."""
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str, cost: int) -> str:
    """Return a bcrypt hash of plain at the given cost factor."""
    if password_too_long(plain):
        raise HashingError(f"password exceeds {MAX_PASSWORD_BYTES} bytes")
    try:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")
    except (ValueError, TypeError) as exc:
        raise HashingError(f"bcrypt hash failed: {exc}") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches the bcrypt hash. Comparison is done by bcrypt."""
    if password_too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise HashingError("stored hash is malformed") from exc


@lru_cache(maxsize=8)
def dummy_hash(cost: int) -> str:
    """Hash used to equalize login timing when the e-mail is unknown [C1].

    Cached per cost so only the first unknown-user login pays for generating it.
    """
    return hash_password("bookmarket_timing_dummy", cost)


def generate_api_key() -> str:
    """Return a new raw API key, e.g. "bm_Q3x...". 32 chars, ~190 bits of entropy."""
    body = "".join(secrets.choice(API_KEY_ALPHABET) for _ in range(API_KEY_LENGTH))
    return f"{API_KEY_PREFIX}{body}"


def hash_api_key(raw_key: str) -> str:
    return hash_password(raw_key, API_KEY_COST)
