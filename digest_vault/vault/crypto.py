"""
Vault Crypto Core — Passphrase key derivation and sealed envelopes.

Every seal derives a fresh key from the passphrase and a random salt:
    PBKDF2-HMAC-SHA256(passphrase, salt, 100k) → AEAD → [salt|nonce|payload+tag]

Envelope layout (raw bytes, fixed-width prefixes):
    salt   16B
    nonce  12B
    ciphertext + 16B authentication tag

Security Note:
    Never log passphrases, derived keys, plaintext or ciphertext values.
    Derived keys live only for the duration of one seal/open call.
"""
import os
import logging
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import IntegrityError, MalformedEnvelopeError

logger = logging.getLogger("digest.vault")

SALT_SIZE = 16
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
MIN_ITERATIONS = 100_000
MIN_ENVELOPE_SIZE = SALT_SIZE + NONCE_SIZE + TAG_SIZE

CIPHER_BACKENDS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def _as_bytes(passphrase: Union[str, bytes]) -> bytes:
    if isinstance(passphrase, str):
        return passphrase.encode("utf-8")
    return passphrase


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    passphrase: Union[str, bytes],
    salt: bytes,
    iterations: int = MIN_ITERATIONS,
) -> bytes:
    """Stretch a passphrase into a 32-byte key using PBKDF2-HMAC-SHA256.

    Args:
        passphrase: User supplied secret.
        salt: Random salt stored next to the ciphertext.
        iterations: PBKDF2 iteration count (at least 100,000).

    Returns:
        32-byte derived key.

    Raises:
        ValueError: If the salt is empty or the iteration count too low.
    """
    if not salt:
        raise ValueError("Key derivation requires a non-empty salt")
    if iterations < MIN_ITERATIONS:
        raise ValueError(
            f"iterations must be at least {MIN_ITERATIONS}, got {iterations}"
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(_as_bytes(passphrase))


# ---------------------------------------------------------------------------
# Sealed envelopes
# ---------------------------------------------------------------------------

class SealedBox:
    """Authenticated encryption of byte strings under a passphrase.

    The box keeps only the passphrase; a new salt, key and nonce are produced
    for every ``seal`` so two records sealed with the same passphrase are
    protected by independent keys.
    """

    def __init__(
        self,
        passphrase: Union[str, bytes],
        cipher_backend: str = "aesgcm",
        iterations: int = MIN_ITERATIONS,
    ):
        if not passphrase:
            raise ValueError("passphrase is required")
        try:
            self._cipher_cls = CIPHER_BACKENDS[cipher_backend]
        except KeyError:
            raise ValueError(
                f"Unsupported cipher backend: {cipher_backend}"
            ) from None
        if iterations < MIN_ITERATIONS:
            raise ValueError(
                f"iterations must be at least {MIN_ITERATIONS}, got {iterations}"
            )
        self._passphrase = _as_bytes(passphrase)
        self._iterations = iterations

    def seal(self, plaintext: bytes) -> bytes:
        """Encrypt plaintext into a self-contained envelope.

        Args:
            plaintext: Data to encrypt.

        Returns:
            Envelope bytes ``salt || nonce || ciphertext+tag``.
        """
        salt = os.urandom(SALT_SIZE)
        key = derive_key(self._passphrase, salt, self._iterations)
        nonce = os.urandom(NONCE_SIZE)
        ct = self._cipher_cls(key).encrypt(nonce, plaintext, None)
        return salt + nonce + ct

    def open(self, envelope: bytes) -> bytes:
        """Authenticate and decrypt an envelope produced by ``seal``.

        Args:
            envelope: Envelope bytes.

        Returns:
            Decrypted plaintext bytes.

        Raises:
            MalformedEnvelopeError: If the envelope is shorter than
                salt + nonce + tag.
            IntegrityError: If authentication fails (wrong passphrase or
                modified data).
        """
        if len(envelope) < MIN_ENVELOPE_SIZE:
            raise MalformedEnvelopeError(
                f"envelope too short: {len(envelope)} bytes "
                f"(minimum {MIN_ENVELOPE_SIZE})"
            )
        salt = envelope[:SALT_SIZE]
        nonce = envelope[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
        ct = envelope[SALT_SIZE + NONCE_SIZE:]
        key = derive_key(self._passphrase, salt, self._iterations)
        try:
            return self._cipher_cls(key).decrypt(nonce, ct, None)
        except InvalidTag:
            raise IntegrityError(
                "envelope failed authentication (wrong passphrase or tampered data)"
            ) from None


def seal(passphrase: Union[str, bytes], plaintext: bytes) -> bytes:
    """Seal plaintext with the default cipher backend."""
    return SealedBox(passphrase).seal(plaintext)


def open_envelope(passphrase: Union[str, bytes], envelope: bytes) -> bytes:
    """Open an envelope sealed with the default cipher backend."""
    return SealedBox(passphrase).open(envelope)
