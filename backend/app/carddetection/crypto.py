"""
carddetection/crypto.py — request signing and payload cipher.

Both primitives are dictated by the upstream service and must not be
swapped for stronger ones without a coordinated change on their side:

  sign    = md5_hex(secret + "".join(k + fmt(v) for k in sorted(params)) + secret)
  payload = hex(DES-ECB(PKCS#7(json)))  with an 8-byte key cycled from secret
"""

from __future__ import annotations

import hashlib

from Crypto.Cipher import DES
from Crypto.Util.Padding import pad, unpad

DES_BLOCK_SIZE = DES.block_size  # 8


class CryptoUtils:

    def __init__(self, app_secret: str) -> None:
        self.app_secret = app_secret

    # ── Signing ────────────────────────────────────────────────────────────

    def sign(self, params: dict) -> str:
        """
        MD5 signature over the ASCII-sorted parameter map.

        The `sign` key itself is never part of the canonical string, so
        signing an already-signed map yields the same value.
        """
        parts = []
        for key in sorted(k for k in params if k != "sign"):
            parts.append(key)
            parts.append(format_value(params[key]))
        canonical = self.app_secret + "".join(parts) + self.app_secret
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()

    def verify_sign(self, params: dict, sign_to_verify: str) -> bool:
        return self.sign(params) == sign_to_verify

    # ── DES-ECB ────────────────────────────────────────────────────────────

    def des_encrypt(self, plain_text: str) -> str:
        cipher = DES.new(self._des_key(), DES.MODE_ECB)
        padded = pad(plain_text.encode("utf-8"), DES_BLOCK_SIZE, style="pkcs7")
        return cipher.encrypt(padded).hex()

    def des_decrypt(self, cipher_text: str) -> str:
        """
        Raises ValueError on bad hex, a length that is not a multiple of the
        block size, or any inconsistent padding byte.
        """
        try:
            cipher_bytes = bytes.fromhex(cipher_text)
        except ValueError as exc:
            raise ValueError(f"decode hex failed: {exc}") from exc

        if not cipher_bytes or len(cipher_bytes) % DES_BLOCK_SIZE != 0:
            raise ValueError("cipher text length is not multiple of block size")

        cipher = DES.new(self._des_key(), DES.MODE_ECB)
        plain = unpad(cipher.decrypt(cipher_bytes), DES_BLOCK_SIZE, style="pkcs7")
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError("decrypted payload is not valid utf-8") from exc

    def _des_key(self) -> bytes:
        secret = self.app_secret.encode("utf-8")
        if not secret:
            raise ValueError("app secret is empty")
        return bytes(secret[i % len(secret)] for i in range(8))


def format_value(value) -> str:
    """
    Canonical string form used in the signature.

    Lists render as ["a","b"] with no spaces, every element quoted whatever
    its type. Booleans are lowercase, matching the upstream's serialisation.
    """
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(f'"{_scalar(item)}"' for item in value) + "]"
    return _scalar(value)


def _scalar(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)
