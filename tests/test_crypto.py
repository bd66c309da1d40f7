"""Tests for key derivation and the AEAD envelope."""

from __future__ import annotations

import pytest

from bookmarksync.crypto import (
    NONCE_LENGTH,
    TAG_LENGTH,
    Cipher,
    derive_key,
    open_envelope,
    seal,
)
from bookmarksync.errors import AuthenticationFailure


@pytest.fixture(scope="module")
def key() -> bytes:
    return derive_key("correct horse")


class TestDeriveKey:
    """PBKDF2 key derivation."""

    def test_key_is_256_bits(self, key):
        assert len(key) == 32

    def test_deterministic(self, key):
        assert derive_key("correct horse") == key

    def test_different_passphrases_differ(self, key):
        assert derive_key("battery staple") != key

    def test_unicode_passphrase(self):
        assert derive_key("pässwörd 🔑") == derive_key("pässwörd 🔑")

    def test_empty_passphrase_rejected(self):
        with pytest.raises(ValueError):
            derive_key("")


class TestEnvelope:
    """seal / open_envelope."""

    @pytest.mark.parametrize("plaintext", [b"", b"x", b"hello world", bytes(range(256)) * 64])
    def test_round_trip(self, key, plaintext):
        assert open_envelope(key, seal(key, plaintext)) == plaintext

    def test_envelope_layout(self, key):
        envelope = seal(key, b"12345")
        assert len(envelope) == NONCE_LENGTH + 5 + TAG_LENGTH

    def test_nonces_unique(self, key):
        nonces = {seal(key, b"same")[:NONCE_LENGTH] for _ in range(10_000)}
        assert len(nonces) == 10_000

    def test_same_plaintext_gives_different_envelopes(self, key):
        assert seal(key, b"data") != seal(key, b"data")

    def test_every_bit_flip_detected(self, key):
        envelope = seal(key, b"bookmarks")
        for i in range(len(envelope) * 8):
            tampered = bytearray(envelope)
            tampered[i // 8] ^= 1 << (i % 8)
            with pytest.raises(AuthenticationFailure):
                open_envelope(key, bytes(tampered))

    def test_wrong_key_fails(self, key):
        envelope = seal(key, b"secret")
        with pytest.raises(AuthenticationFailure):
            open_envelope(derive_key("wrong"), envelope)

    @pytest.mark.parametrize("length", [0, 5, 11, 12, 27])
    def test_short_envelope_fails(self, key, length):
        with pytest.raises(AuthenticationFailure):
            open_envelope(key, b"\x00" * length)

    def test_truncated_envelope_fails(self, key):
        envelope = seal(key, b"some bookmarks")
        with pytest.raises(AuthenticationFailure):
            open_envelope(key, envelope[:-1])


class TestCipher:
    """Passphrase-bound Cipher wrapper."""

    def test_round_trip(self):
        cipher = Cipher("correct horse")
        assert cipher.open(cipher.seal(b"tree")) == b"tree"

    def test_interoperates_with_functions(self, key):
        cipher = Cipher("correct horse")
        assert cipher.key == key
        assert open_envelope(key, cipher.seal(b"x")) == b"x"
