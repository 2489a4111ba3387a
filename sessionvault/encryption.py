"""AES-256-GCM content cipher.

Every installation shares the same key, so this is a deterrent against
casually copying the transcripts out of the bundle. Anyone holding the
program and its key can decrypt the corpus; the scheme makes no
confidentiality claim beyond that.
"""

from __future__ import annotations

import base64
import binascii
from typing import Optional

from Cryptodome.Cipher import AES
from Cryptodome.Random import get_random_bytes

from .constants import KEY_SIZE, NONCE_SIZE, TAG_SIZE
from .errors import DecryptionFailed, KeyConfigError


def check_key(key: bytes) -> bytes:
    if not isinstance(key, (bytes, bytearray)):
        raise KeyConfigError("Key must be bytes")
    if len(key) != KEY_SIZE:
        raise KeyConfigError(f"Key must be exactly {KEY_SIZE} bytes (got {len(key)})")
    return bytes(key)


class ContentCipher:
    def __init__(self, key: bytes):
        self.key = check_key(key)

    def encrypt_bytes(self, plaintext: bytes, *, nonce: Optional[bytes] = None) -> bytes:
        if nonce is None:
            nonce = get_random_bytes(NONCE_SIZE)
        if len(nonce) != NONCE_SIZE:
            raise ValueError(f"Nonce must be {NONCE_SIZE} bytes")
        cipher = AES.new(self.key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return nonce + ciphertext + tag

    def decrypt_bytes(self, payload: bytes) -> bytes:
        if len(payload) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionFailed("Encrypted payload too short")
        nonce = payload[:NONCE_SIZE]
        tag = payload[-TAG_SIZE:]
        ciphertext = payload[NONCE_SIZE:-TAG_SIZE]
        cipher = AES.new(self.key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)
        try:
            return cipher.decrypt_and_verify(ciphertext, tag)
        except ValueError as exc:  # MAC check failed
            raise DecryptionFailed(f"Content failed authentication: {exc}")

    def encrypt(self, plaintext: str) -> str:
        """Encrypt text and return base64(nonce || ciphertext || tag)."""
        return base64.b64encode(self.encrypt_bytes(plaintext.encode("utf-8"))).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            payload = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
            raise DecryptionFailed(f"Content is not valid base64: {exc}")
        raw = self.decrypt_bytes(payload)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionFailed(f"Decrypted content is not UTF-8: {exc}")

    def try_decrypt(self, token: str) -> Optional[str]:
        try:
            return self.decrypt(token)
        except DecryptionFailed:
            return None
