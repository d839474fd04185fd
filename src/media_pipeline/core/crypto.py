"""Content hashing, gzip compression and AES-256-GCM encryption helpers."""

import gzip
import hashlib
import hmac
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import ConfigurationError, SecurityError

NONCE_SIZE = 12
ENCRYPTION_ALGORITHM = "aes-256-gcm"
ENCRYPTION_KEY_ENV = "FILE_ENCRYPTION_KEY"


def compute_content_hash(content: bytes) -> str:
    """Compute SHA256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def compress_content(content: bytes, level: int = 6) -> bytes:
    """Compress content using gzip."""
    return gzip.compress(content, compresslevel=level)


def decompress_content(content: bytes) -> bytes:
    """Decompress gzip content."""
    return gzip.decompress(content)


def derive_key(secret: str) -> bytes:
    """
    Turn a configured secret into a 32-byte AES key.

    A 64-character hex string is used as the raw key; anything else is hashed.
    """
    candidate = secret.strip()
    if len(candidate) == 64:
        try:
            return bytes.fromhex(candidate)
        except ValueError:
            pass
    return hashlib.sha256(candidate.encode("utf-8")).digest()


def resolve_encryption_key(secret: Optional[str] = None) -> bytes:
    """Key from the explicit secret or the FILE_ENCRYPTION_KEY variable."""
    secret = secret or os.getenv(ENCRYPTION_KEY_ENV)
    if not secret:
        raise ConfigurationError(
            f"Encryption enabled but no key configured (set {ENCRYPTION_KEY_ENV})"
        )
    return derive_key(secret)


def encrypt_content(content: bytes, key: bytes, associated_data: Optional[bytes] = None) -> bytes:
    """Encrypt with AES-256-GCM. Output is ``nonce || ciphertext || tag``."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, content, associated_data)


def decrypt_content(payload: bytes, key: bytes, associated_data: Optional[bytes] = None) -> bytes:
    """Reverse ``encrypt_content``; tampered payloads raise SecurityError."""
    if len(payload) < NONCE_SIZE + 16:
        raise SecurityError("Encrypted payload is truncated")
    nonce, ciphertext = payload[:NONCE_SIZE], payload[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag as exc:
        raise SecurityError("Encrypted payload failed authentication") from exc


def sign_token(secret: bytes, message: str) -> str:
    return hmac.new(secret, message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_token(secret: bytes, message: str, signature: str) -> bool:
    return hmac.compare_digest(sign_token(secret, message), signature)
