"""
Encryption at rest for provider tokens.

AES-256-GCM with a fresh random nonce per call. The stored envelope is
``<nonce hex>:<tag hex>:<ciphertext hex>``. Without a key the cipher is a
pass-through, and ``decrypt`` hands back anything that is not a well-formed
envelope unchanged so rows written before the key was rolled out keep working.
"""

import binascii
import os
import string

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from flask import current_app

from security.errors import ConfigurationError, TokenDecryptionError

KEY_BYTES = 32
NONCE_BYTES = 16
TAG_BYTES = 16

_HEX = set(string.hexdigits)


def _is_hex(value: str) -> bool:
    return all(c in _HEX for c in value)


def parse_key(key_hex):
    """Decode the configured hex key. Empty means "not configured"."""
    if not key_hex:
        return None
    key_hex = key_hex.strip()
    try:
        key = bytes.fromhex(key_hex)
    except ValueError:
        raise ConfigurationError("OAUTH_ENCRYPTION_KEY must be hex-encoded")
    if len(key) != KEY_BYTES:
        raise ConfigurationError(
            f"OAUTH_ENCRYPTION_KEY must be {KEY_BYTES * 2} hex characters ({KEY_BYTES} bytes)"
        )
    return key


class TokenCipher:
    def __init__(self, key_hex=None):
        self._key = parse_key(key_hex)
        self._aead = AESGCM(self._key) if self._key else None

    @property
    def is_configured(self) -> bool:
        return self._aead is not None

    def encrypt(self, plaintext):
        if plaintext is None or self._aead is None:
            return plaintext

        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, envelope):
        if envelope is None or self._aead is None:
            return envelope

        parts = self._split(envelope)
        if parts is None:
            # legacy plaintext value
            return envelope

        nonce, tag, ciphertext = parts
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise TokenDecryptionError()
        return plaintext.decode("utf-8")

    @staticmethod
    def looks_encrypted(value) -> bool:
        return isinstance(value, str) and TokenCipher._split(value) is not None

    @staticmethod
    def _split(value):
        parts = value.split(":")
        if len(parts) != 3:
            return None
        nonce_hex, tag_hex, ct_hex = parts
        if len(nonce_hex) != NONCE_BYTES * 2 or len(tag_hex) != TAG_BYTES * 2:
            return None
        if len(ct_hex) % 2 or not _is_hex(nonce_hex + tag_hex + ct_hex):
            return None
        try:
            return bytes.fromhex(nonce_hex), bytes.fromhex(tag_hex), bytes.fromhex(ct_hex)
        except (ValueError, binascii.Error):
            return None


def init_token_cipher(app, logger) -> TokenCipher:
    """Build the process-wide cipher once at start-up."""
    cipher = TokenCipher(app.config.get("OAUTH_ENCRYPTION_KEY"))
    if not cipher.is_configured:
        if app.config.get("REQUIRE_TOKEN_ENCRYPTION"):
            raise ConfigurationError("OAUTH_ENCRYPTION_KEY is required but not set")
        logger.warning(
            "token_encryption_disabled",
            detail="OAUTH_ENCRYPTION_KEY not set; provider tokens will be stored in clear text",
        )
    app.extensions["token_cipher"] = cipher
    return cipher


def get_token_cipher() -> TokenCipher:
    return current_app.extensions["token_cipher"]
