from __future__ import annotations

import hashlib
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

AES_BLOCK_BITS = 128
IV_LEN = 16
DECRYPTION_ERROR = "Decryption error"


class MessageCodec:
    """
    Storage-boundary cipher for message text.

    AES-256-CBC with PKCS7 padding. The key is SHA-256 of the configured
    secret; every call draws a fresh 16-byte IV. Tokens are ``ivHex:cipherHex``.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Message encryption secret is required")
        self._key = hashlib.sha256(secret.encode("utf-8")).digest()

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LEN)
        padder = padding.PKCS7(AES_BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ct = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ct.hex()}"

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored token.

        Returns None for a missing token and the ``DECRYPTION_ERROR`` sentinel
        for anything that cannot be decrypted, so message lists stay renderable.
        """
        if not token:
            return None
        try:
            iv_hex, ct_hex = token.split(":")
            if not iv_hex or not ct_hex:
                raise ValueError("Invalid encrypted text format")
            iv = bytes.fromhex(iv_hex)
            ct = bytes.fromhex(ct_hex)

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ct) + decryptor.finalize()

            unpadder = padding.PKCS7(AES_BLOCK_BITS).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("Could not decrypt stored message text: %s", exc)
            return DECRYPTION_ERROR
