from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError


# Argon2 parameters for account passwords
_ph = PasswordHasher(
    time_cost=2,
    memory_cost=102400,  # ~100 MB
    parallelism=8,
    hash_len=32,
    salt_len=16,
)

# OTPs live for minutes and are rate limited, a lighter profile is enough
_otp_ph = PasswordHasher(
    time_cost=2,
    memory_cost=19456,
    parallelism=1,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    return _ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _ph.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def hash_otp(otp: str) -> str:
    return _otp_ph.hash(otp)


def verify_otp_hash(otp: str, otp_hash: str | None) -> bool:
    if not otp_hash:
        return False
    try:
        return _otp_ph.verify(otp_hash, otp)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False
