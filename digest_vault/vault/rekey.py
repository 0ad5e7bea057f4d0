"""
Vault Re-keying — Re-seal every record under a new passphrase.

Every record is opened with the current passphrase first; if any record
fails to open, nothing is written. Each record is then rewritten
atomically under the new passphrase, one at a time. A write that fails
part way through leaves the earlier records under the new passphrase and
the rest under the old one.

Security Note:
    Plaintext exists in memory only while the records are re-sealed.
    Never log plaintext or ciphertext values.
"""
import logging

from .config import StoreConfig
from .store import SecretStore

logger = logging.getLogger("digest.vault")


def change_passphrase(
    store: SecretStore,
    new_passphrase: str,
) -> tuple[SecretStore, dict]:
    """Re-seal all records of ``store`` under ``new_passphrase``.

    Args:
        store: Store opened with the current passphrase.
        new_passphrase: Passphrase for the re-sealed records.

    Returns:
        Tuple of (store bound to the new passphrase, stats dict with
        keys: total, resealed).

    Raises:
        IntegrityError: If a record does not open with the current passphrase.
        MalformedEnvelopeError: If a record is corrupt.
        ValueError: If the new passphrase is empty.
    """
    if not new_passphrase:
        raise ValueError("new passphrase is required")

    names = store.names()
    logger.info("Starting re-key of %d record(s)", len(names))

    plaintexts = {name: store.get(name) for name in names}

    values = store.config.model_dump()
    values["passphrase"] = new_passphrase
    new_store = SecretStore(StoreConfig(**values))

    stats = {"total": len(names), "resealed": 0}
    for name, plaintext in plaintexts.items():
        new_store.put(name, plaintext)
        stats["resealed"] += 1

    logger.info("Re-key complete: %s", stats)
    return new_store, stats
