# backend/chatapp/security/otp.py
import pyotp

OTP_DIGITS = 6


def generate_otp() -> str:
    """Fresh 6-digit passcode from a one-shot random HOTP secret."""
    return pyotp.HOTP(pyotp.random_base32(), digits=OTP_DIGITS).at(0)


def is_well_formed(code: str) -> bool:
    return len(code) == OTP_DIGITS and code.isdigit()
