"""
Tests for key derivation and sealed envelopes.

Tests cover:
- Round trip and envelope layout
- Tamper detection across every envelope region
- Wrong passphrase rejection
- Fresh salt and nonce per seal
- Malformed (truncated) envelopes
"""
import pytest

from digest_vault.exceptions import IntegrityError, MalformedEnvelopeError
from digest_vault.vault.crypto import (
    MIN_ENVELOPE_SIZE,
    NONCE_SIZE,
    SALT_SIZE,
    TAG_SIZE,
    SealedBox,
    derive_key,
    open_envelope,
    seal,
)


def _flip(envelope: bytes, index: int, bit: int = 0) -> bytes:
    data = bytearray(envelope)
    data[index] ^= 1 << bit
    return bytes(data)


@pytest.fixture(scope="module")
def sealed():
    """One envelope shared by the tamper tests (sealing is slow by design)."""
    return seal("correct-horse", b"refresh-token-payload")


class TestKeyDerivation:
    """Tests for derive_key."""

    def test_deterministic(self):
        salt = b"\x01" * SALT_SIZE
        assert derive_key("pass", salt) == derive_key("pass", salt)

    def test_key_length(self):
        assert len(derive_key("pass", b"\x00" * SALT_SIZE)) == 32

    def test_salt_changes_key(self):
        assert derive_key("pass", b"\x01" * 16) != derive_key("pass", b"\x02" * 16)

    def test_str_and_bytes_passphrase_agree(self):
        salt = b"\x03" * SALT_SIZE
        assert derive_key("pass", salt) == derive_key(b"pass", salt)

    def test_empty_salt_rejected(self):
        with pytest.raises(ValueError):
            derive_key("pass", b"")

    def test_low_iterations_rejected(self):
        with pytest.raises(ValueError):
            derive_key("pass", b"\x00" * SALT_SIZE, iterations=1000)


class TestSealOpen:
    """Tests for SealedBox round trips and layout."""

    @pytest.mark.parametrize("plaintext", [
        b"x",
        b'{"installed": {"client_id": "abc"}}',
        bytes(range(256)) * 4,
    ])
    def test_round_trip(self, plaintext):
        box = SealedBox("correct-horse")
        assert box.open(box.seal(plaintext)) == plaintext

    def test_module_helpers_round_trip(self):
        assert open_envelope("k", seal("k", b"data")) == b"data"

    def test_envelope_layout(self):
        plaintext = b"sensitive"
        envelope = seal("k", plaintext)
        assert len(envelope) == SALT_SIZE + NONCE_SIZE + len(plaintext) + TAG_SIZE
        assert plaintext not in envelope

    def test_chacha20_backend(self):
        box = SealedBox("k", cipher_backend="chacha20")
        assert box.open(box.seal(b"data")) == b"data"

    def test_backend_mismatch_fails_closed(self):
        envelope = SealedBox("k", cipher_backend="chacha20").seal(b"data")
        with pytest.raises(IntegrityError):
            SealedBox("k", cipher_backend="aesgcm").open(envelope)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            SealedBox("k", cipher_backend="des")

    def test_empty_passphrase(self):
        with pytest.raises(ValueError):
            SealedBox("")

    def test_same_input_gives_different_envelopes(self):
        first = seal("correct-horse", b"same plaintext")
        second = seal("correct-horse", b"same plaintext")
        assert first != second
        assert first[:SALT_SIZE] != second[:SALT_SIZE]
        assert first[SALT_SIZE:SALT_SIZE + NONCE_SIZE] != second[SALT_SIZE:SALT_SIZE + NONCE_SIZE]


class TestTamperDetection:
    """Flipping any bit must fail with IntegrityError."""

    @pytest.mark.parametrize("region", ["salt", "nonce", "ciphertext", "tag"])
    @pytest.mark.parametrize("bit", [0, 7])
    def test_bit_flip_detected(self, sealed, region, bit):
        offsets = {
            "salt": 3,
            "nonce": SALT_SIZE + 5,
            "ciphertext": SALT_SIZE + NONCE_SIZE + 2,
            "tag": len(sealed) - 1,
        }
        with pytest.raises(IntegrityError):
            open_envelope("correct-horse", _flip(sealed, offsets[region], bit))

    def test_every_ciphertext_byte_covered(self, sealed):
        start = SALT_SIZE + NONCE_SIZE
        for index in range(start, len(sealed), 4):
            with pytest.raises(IntegrityError):
                open_envelope("correct-horse", _flip(sealed, index))

    def test_appended_byte_detected(self, sealed):
        with pytest.raises(IntegrityError):
            open_envelope("correct-horse", sealed + b"\x00")

    def test_wrong_passphrase(self, sealed):
        with pytest.raises(IntegrityError):
            open_envelope("wrong", sealed)


class TestMalformedEnvelope:
    """Truncated envelopes are malformed, not tampered."""

    @pytest.mark.parametrize("length", [0, 1, SALT_SIZE, MIN_ENVELOPE_SIZE - 1])
    def test_too_short(self, sealed, length):
        with pytest.raises(MalformedEnvelopeError):
            open_envelope("correct-horse", sealed[:length])

    def test_minimum_length_is_authenticated(self, sealed):
        # long enough to parse, but the tag no longer matches
        with pytest.raises(IntegrityError):
            open_envelope("correct-horse", sealed[:MIN_ENVELOPE_SIZE])
