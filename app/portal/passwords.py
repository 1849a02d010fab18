"""
Password hashing.

Hashes are scrypt-derived (64-byte key, fresh 32-character salt per call) and
encoded by werkzeug as ``scrypt:<n>:<r>:<p>$<salt>$<hex key>``. Verification
re-derives with the stored salt and compares in constant time.
"""
from __future__ import annotations

import logging

from werkzeug.security import check_password_hash, generate_password_hash

logger = logging.getLogger(__name__)

HASH_METHOD = "scrypt"
SALT_LENGTH = 32
KEY_HEX_LENGTH = 128  # 64-byte derived key


def hash_password(password: str) -> str:
    return generate_password_hash(password, method=HASH_METHOD, salt_length=SALT_LENGTH)


def _is_well_formed(password_hash: str) -> bool:
    parts = password_hash.split("$")
    if len(parts) != 3:
        return False
    method, salt, key = parts
    if not method.startswith(HASH_METHOD) or not salt:
        return False
    return len(key) == KEY_HEX_LENGTH


def verify_password(password: str, password_hash: str | None) -> bool:
    """Return True only if `password` matches; malformed hashes never match."""
    if not password_hash or not _is_well_formed(password_hash):
        return False
    try:
        return check_password_hash(password_hash, password)
    except (ValueError, TypeError):
        logger.warning("Unverifiable password hash encountered")
        return False
