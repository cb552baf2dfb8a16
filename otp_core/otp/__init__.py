"""
OTP Codes and Challenges
========================
Code generation/hashing and the challenge state machine.
"""

# Re-export all public APIs
from .models import ChallengeStatus, OTPChallenge, VerifiedChallenge
from .hashing import (
    generate_code,
    generate_salt,
    generate_challenge_id,
    compute_code_hash,
    hash_code,
    verify_code,
)
from .challenge_store import ChallengeStore, VerifyOutcome, CHALLENGES_COLLECTION

__all__ = [
    # Models
    "ChallengeStatus",
    "OTPChallenge",
    "VerifiedChallenge",
    # Hashing
    "generate_code",
    "generate_salt",
    "generate_challenge_id",
    "compute_code_hash",
    "hash_code",
    "verify_code",
    # Store
    "ChallengeStore",
    "VerifyOutcome",
    "CHALLENGES_COLLECTION",
]
