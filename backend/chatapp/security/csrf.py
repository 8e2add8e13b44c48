"""
CSRF token generation and validation.

Tokens are ``random_value + HMAC(secret, random_value)`` hex encoded. The
signature lets the middleware reject forged tokens without touching the
database; the session-bound comparison happens in SessionAuthority.
"""
import hashlib
import hmac
import os

CSRF_HEADER = "x-csrf-token"
CSRF_COOKIE = "csrfToken"


class CSRFTokenManager:
    """
    CSRF token manager using the double-submit pattern.
    Token includes: random_value + HMAC(secret, random_value)
    """

    RANDOM_LEN = 32

    def __init__(self, secret: str):
        self.secret = secret.encode("utf-8")

    def generate_token(self) -> str:
        random_part = os.urandom(self.RANDOM_LEN)
        signature = hmac.new(self.secret, random_part, hashlib.sha256).digest()
        return (random_part + signature).hex()

    def verify_token(self, token: str) -> bool:
        """Return True if the token carries a valid signature."""
        try:
            token_bytes = bytes.fromhex(token)
        except ValueError:
            return False

        random_part = token_bytes[: self.RANDOM_LEN]
        signature = token_bytes[self.RANDOM_LEN:]
        if len(random_part) != self.RANDOM_LEN or not signature:
            return False

        expected_signature = hmac.new(self.secret, random_part, hashlib.sha256).digest()
        # Constant-time comparison
        return hmac.compare_digest(signature, expected_signature)


def tokens_match(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
