"""Vault — Passphrase-sealed secret storage on the local filesystem.

Security Note (Threat Model):
    The passphrase is held in process memory for the lifetime of the store
    and decrypted secrets exist in memory while in use. A memory dump of the
    process could expose them. This is an accepted limitation; hardware key
    stores are out of scope.
"""

from .crypto import SealedBox, derive_key, seal, open_envelope
from .config import StoreConfig, validate_environment
from .store import SecretStore, CREDENTIALS, TOKEN
from .rekey import change_passphrase

__all__ = [
    "SealedBox",
    "derive_key",
    "seal",
    "open_envelope",
    "StoreConfig",
    "validate_environment",
    "SecretStore",
    "CREDENTIALS",
    "TOKEN",
    "change_passphrase",
]
