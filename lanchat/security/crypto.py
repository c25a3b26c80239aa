"""
Security module: password-derived keys + AES-256-GCM encryption.

The password never leaves the process. Two one-way derivations do:
the AES key (used locally only) and a namespaced fingerprint that is
sent during peer verification.
"""

import base64
import binascii
import hashlib
import hmac
import os
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from lanchat.config import FINGERPRINT_PREFIX

logger = logging.getLogger(__name__)

# AES-256-GCM nonce size (12 bytes recommended)
NONCE_SIZE = 12
# AES-256 key size
KEY_SIZE = 32


class DecryptionError(Exception):
    """Raised when a wire token cannot be decrypted for any reason."""

    def __init__(self) -> None:
        super().__init__("could not decrypt payload")


def derive_key(password: str) -> bytes:
    """Return the 32-byte AES key for a password (SHA-256)."""
    return hashlib.sha256(password.encode("utf-8")).digest()


def fingerprint(password: str) -> str:
    """
    Return the non-secret verification fingerprint for a password.

    The protocol prefix keeps it distinct from the encryption key,
    so a fingerprint seen on the wire is useless as a key.
    """
    digest = hashlib.sha256((FINGERPRINT_PREFIX + password).encode("utf-8"))
    return digest.hexdigest()


def fingerprints_match(remote: str, local: str) -> bool:
    """Constant-time fingerprint comparison."""
    return hmac.compare_digest(remote.encode("utf-8"), local.encode("utf-8"))


def encrypt(plaintext: bytes, password: str) -> str:
    """
    Encrypt a payload for the line-oriented wire protocol.

    Returns: base64(nonce (12 bytes) || ciphertext || tag (16 bytes))
    """
    nonce = os.urandom(NONCE_SIZE)
    aesgcm = AESGCM(derive_key(password))
    ciphertext = aesgcm.encrypt(nonce, plaintext, None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt(token: str | bytes, password: str) -> bytes:
    """
    Decrypt a wire token produced by encrypt().

    Raises DecryptionError on bad encoding, truncated data or a failed
    authentication check; the three cases are indistinguishable.
    """
    try:
        data = base64.b64decode(token.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionError() from None

    if len(data) < NONCE_SIZE:
        raise DecryptionError()

    nonce = data[:NONCE_SIZE]
    ciphertext = data[NONCE_SIZE:]
    aesgcm = AESGCM(derive_key(password))
    try:
        return aesgcm.decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise DecryptionError() from None
