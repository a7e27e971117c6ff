"""Field-level encryption for PII stored at rest.

Format (the only one written): ``base64(iv) + ":" + base64(ciphertext)``,
AES-256-CBC, PKCS#7 padding, a fresh random 16-byte IV per value, standard
base64 alphabet with padding.

Decryption policy:
  * values without the delimiter are legacy plaintext and are returned as-is;
  * values that are not well-formed ciphertext are returned as-is;
  * well-formed ciphertext that does not decrypt raises ``DecryptionError``.
    That is almost always a key mismatch and must surface, not pass through.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import re
from enum import Enum
from typing import Optional, Tuple

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from config.settings import settings

log = logging.getLogger("uniform.security.crypto")

DELIMITER = ":"
IV_BYTES = 16
KEY_BYTES = 32
_BLOCK_BITS = 128

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_B64ISH_RE = re.compile(r"^[A-Za-z0-9+/=]{16,}$")


class EncryptionConfigError(RuntimeError):
    pass


class DecryptionError(ValueError):
    pass


class CipherState(str, Enum):
    EMPTY = "empty"
    PLAINTEXT = "plaintext"
    ENCRYPTED = "encrypted"
    KEY_MISMATCH = "key_mismatch"
    MALFORMED = "malformed"
    LEGACY_HEX = "legacy_hex"


def derive_key(secret: str) -> bytes:
    raw = secret.encode("utf-8")
    if len(raw) == KEY_BYTES:
        return raw
    return hashlib.sha256(raw).digest()


def _split_b64(value: str) -> Optional[Tuple[bytes, bytes]]:
    parts = value.split(DELIMITER)
    if len(parts) != 2:
        return None
    try:
        iv = base64.b64decode(parts[0], validate=True)
        ct = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(iv) != IV_BYTES or not ct or len(ct) % IV_BYTES:
        return None
    return iv, ct


def _split_hex(value: str) -> Optional[Tuple[bytes, bytes]]:
    parts = value.split(DELIMITER)
    if len(parts) != 2 or not all(_HEX_RE.match(p) for p in parts):
        return None
    if len(parts[0]) != IV_BYTES * 2 or len(parts[1]) % (IV_BYTES * 2):
        return None
    return bytes.fromhex(parts[0]), bytes.fromhex(parts[1])


class FieldCipher:
    def __init__(self, secret: Optional[str] = None):
        secret = settings.ENCRYPTION_KEY if secret is None else secret
        if not secret:
            raise EncryptionConfigError("encryption_key_not_configured")
        self._secret_len = len(secret.encode("utf-8"))
        self._key = derive_key(secret)

    def derivation_mode(self) -> str:
        return "direct" if self._secret_len == KEY_BYTES else "sha256"

    def key_fingerprint(self) -> str:
        return hashlib.sha256(self._key).hexdigest()[:12]

    def encrypt(self, text: Optional[str], iv: Optional[bytes] = None) -> Optional[str]:
        if not text:
            return text
        iv = iv or os.urandom(IV_BYTES)
        padder = padding.PKCS7(_BLOCK_BITS).padder()
        data = padder.update(text.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ct = encryptor.update(data) + encryptor.finalize()
        return base64.b64encode(iv).decode("ascii") + DELIMITER + base64.b64encode(ct).decode("ascii")

    def _decrypt_parts(self, iv: bytes, ct: bytes) -> str:
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ct) + decryptor.finalize()
        try:
            unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise DecryptionError("decryption_failed") from e

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        if not value or not isinstance(value, str) or DELIMITER not in value:
            return value
        parts = _split_b64(value)
        if parts is None:
            return value
        return self._decrypt_parts(*parts)

    def decrypt_legacy_hex(self, value: str) -> str:
        parts = _split_hex(value)
        if parts is None:
            raise DecryptionError("not_legacy_hex")
        return self._decrypt_parts(*parts)

    def inspect(self, value: object) -> CipherState:
        if not isinstance(value, str) or not value.strip():
            return CipherState.EMPTY
        if DELIMITER not in value:
            return CipherState.PLAINTEXT
        parts = _split_b64(value)
        if parts is not None:
            try:
                self._decrypt_parts(*parts)
            except DecryptionError:
                return CipherState.KEY_MISMATCH
            return CipherState.ENCRYPTED
        hex_parts = _split_hex(value)
        if hex_parts is not None:
            try:
                self._decrypt_parts(*hex_parts)
            except DecryptionError:
                return CipherState.KEY_MISMATCH
            return CipherState.LEGACY_HEX
        segments = value.split(DELIMITER)
        if len(segments) == 2 and all(_B64ISH_RE.match(s) for s in segments):
            return CipherState.MALFORMED
        # e.g. "Block A: 12" is an address, not a broken ciphertext.
        return CipherState.PLAINTEXT

    def is_encrypted(self, value: object) -> bool:
        return self.inspect(value) == CipherState.ENCRYPTED
