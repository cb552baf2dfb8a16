"""
OTP Hashing Utilities
=====================
Secure generation, hashing and verification of OTP codes.

Codes are bound to their challenge: the digest covers the challenge id, the
code and a per-challenge salt, so a hash cannot be replayed on another
challenge.
"""

import hashlib
import hmac
import secrets
import time
from typing import Optional, Tuple


def generate_code(length: int = 6) -> str:
    """
    Generate a uniformly random numeric code.

    Args:
        length: Number of digits

    Returns:
        Zero-padded code string
    """
    if length < 1:
        raise ValueError("length must be at least 1")
    return str(secrets.randbelow(10 ** length)).zfill(length)


def generate_salt() -> str:
    """Generate a random salt for code hashing."""
    return secrets.token_hex(16)


def generate_challenge_id() -> str:
    """Opaque challenge id: otp_<epoch-millis>_<12 hex chars>."""
    return f"otp_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def compute_code_hash(challenge_id: str, code: str, salt: str) -> str:
    """SHA-256 hex digest of ``challenge_id:code:salt``."""
    payload = f"{challenge_id}:{code}:{salt}"
    return hashlib.sha256(payload.encode()).hexdigest()


def hash_code(challenge_id: str, code: str) -> Tuple[str, str]:
    """
    Hash a code for storage.

    Args:
        challenge_id: Challenge the code belongs to
        code: Plain code

    Returns:
        Tuple of (salt, code_hash)
    """
    salt = generate_salt()
    return salt, compute_code_hash(challenge_id, code, salt)


def verify_code(
    challenge_id: str,
    code: str,
    salt: Optional[str],
    code_hash: Optional[str],
) -> bool:
    """
    Verify a code against its stored hash.

    Uses constant-time comparison. A missing or malformed stored hash is a
    non-match, never an error.

    Args:
        challenge_id: Challenge the code belongs to
        code: User-provided code
        salt: Stored salt
        code_hash: Stored hex digest

    Returns:
        True if the code matches
    """
    if not salt or not code_hash:
        return False
    try:
        stored = bytes.fromhex(str(code_hash))
    except ValueError:
        return False
    computed = bytes.fromhex(compute_code_hash(challenge_id, code, salt))
    return hmac.compare_digest(computed, stored)
