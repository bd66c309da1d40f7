"""
Client-side encryption envelope.

The bookmark tree never leaves the device in plaintext. A passphrase is
stretched into a 256-bit key with PBKDF2-HMAC-SHA256, and every payload
is sealed with AES-256-GCM under a fresh random nonce:

    envelope = nonce (12 bytes) || ciphertext || tag (16 bytes)

The salt is fixed application-wide. The sync id is already an
unguessable per-user secret, so no per-user salt travels with the blob.
"""

from __future__ import annotations

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationFailure

logger = logging.getLogger("bookmarksync.crypto")

PBKDF2_ITERATIONS = 100_000
SALT = b"bookmarksync-v1"
KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


def derive_key(passphrase: str) -> bytes:
    """Derive the 256-bit sync key from a passphrase.

    Args:
        passphrase: Non-empty UTF-8 passphrase of any length.

    Returns:
        32 bytes of key material. Same passphrase, same key.

    Raises:
        ValueError: If the passphrase is empty.
    """
    if not passphrase:
        raise ValueError("Passphrase must not be empty")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=SALT,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def seal(key: bytes, plaintext: bytes) -> bytes:
    """Encrypt and authenticate ``plaintext`` into an envelope.

    A new nonce is drawn from the OS CSPRNG on every call.
    """
    nonce = os.urandom(NONCE_LENGTH)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def open_envelope(key: bytes, envelope: bytes) -> bytes:
    """Verify and decrypt an envelope produced by :func:`seal`.

    Raises:
        AuthenticationFailure: If the envelope is truncated, was sealed
            under another key, or has been modified.
    """
    if len(envelope) < NONCE_LENGTH + TAG_LENGTH:
        raise AuthenticationFailure(
            f"Envelope too short ({len(envelope)} bytes)"
        )

    nonce, body = envelope[:NONCE_LENGTH], envelope[NONCE_LENGTH:]
    try:
        return AESGCM(key).decrypt(nonce, body, None)
    except InvalidTag as exc:
        logger.debug("Envelope failed tag verification")
        raise AuthenticationFailure(
            "Decryption failed: wrong passphrase or corrupted data"
        ) from exc


class Cipher:
    """Sealing and opening bound to one passphrase.

    Key derivation runs once at construction; PBKDF2 at 100k
    iterations is deliberately slow.
    """

    def __init__(self, passphrase: str):
        self._key = derive_key(passphrase)

    @property
    def key(self) -> bytes:
        return self._key

    def seal(self, plaintext: bytes) -> bytes:
        return seal(self._key, plaintext)

    def open(self, envelope: bytes) -> bytes:
        return open_envelope(self._key, envelope)
