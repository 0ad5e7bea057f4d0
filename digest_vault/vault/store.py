"""
SecretStore — Named, sealed records on the local filesystem.

Provides the public API for the credential store:
- ``put(name, data)`` — seal and atomically replace a record
- ``get(name)`` — read and open a record
- ``delete(name)`` — remove a record (no-op when absent)
- ``store_credentials`` / ``load_credentials`` / ``setup_from_file``
- ``cleanup()`` — remove the credentials and token records

Every record is one file ``<base_dir>/<name>.enc`` holding one envelope.
Files are created owner-only (0600) inside an owner-only (0700) directory.

Limitation:
    One store instance owns the directory. No lock file is taken, so two
    processes writing the same record concurrently resolve as last writer
    wins.

Security Note:
    Never log plaintext or ciphertext values. Only log record names.
"""
import os
import re
import logging
import tempfile
from pathlib import Path
from typing import Optional, Union

import orjson

from .config import StoreConfig
from .crypto import SealedBox
from ..exceptions import NotFoundError, ValidationError

logger = logging.getLogger("digest.vault")

CREDENTIALS = "credentials"
TOKEN = "token"

RECORD_SUFFIX = ".enc"
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_DIR_MODE = 0o700
_FILE_MODE = 0o600


def validate_credentials(data: bytes) -> dict:
    """Check that credentials bytes hold a JSON object.

    Args:
        data: Raw credentials file content.

    Returns:
        The parsed object.

    Raises:
        ValidationError: If the bytes are not a JSON object.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise ValidationError(f"invalid credentials JSON: {err}") from err
    if not isinstance(parsed, dict):
        raise ValidationError(
            "invalid credentials JSON: expected an object, "
            f"got {type(parsed).__name__}"
        )
    return parsed


class SecretStore:
    """Passphrase-sealed records under one base directory.

    Records are always rewritten whole: a new file is written beside the
    old one and renamed over it, so readers see either the previous or
    the new envelope, never a partial write.
    """

    def __init__(self, config: StoreConfig):
        self._config = config
        self._base_dir = config.base_dir
        self._box = SealedBox(
            config.passphrase.get_secret_value(),
            cipher_backend=config.cipher_backend,
            iterations=config.kdf_iterations,
        )
        self._ensure_dir()

    @classmethod
    def from_env(cls) -> "SecretStore":
        """Build a store from ``StoreConfig.from_env()``."""
        return cls(StoreConfig.from_env())

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def config(self) -> StoreConfig:
        return self._config

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _ensure_dir(self) -> None:
        self._base_dir.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
        # mkdir does not touch an existing directory's mode
        os.chmod(self._base_dir, _DIR_MODE)

    def _validate_name(self, name: str) -> None:
        """Validate a record name.

        Raises:
            ValueError: If the name is empty, too long or has characters
                outside ``[A-Za-z0-9_-]``.
        """
        if not name or not _NAME_PATTERN.match(name):
            raise ValueError(
                f"Invalid record name {name!r}: use 1-64 letters, "
                "digits, '_' or '-'"
            )

    def path_for(self, name: str) -> Path:
        """Return the file path of the record ``name``."""
        self._validate_name(name)
        return self._base_dir / f"{name}{RECORD_SUFFIX}"

    def _write_atomic(self, path: Path, payload: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.stem}-", suffix=".tmp", dir=self._base_dir,
        )
        try:
            os.fchmod(fd, _FILE_MODE)
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def put(self, name: str, data: bytes) -> None:
        """Seal ``data`` and replace the record ``name`` with it.

        The ``credentials`` record only accepts a JSON object; anything
        else is rejected before encryption.

        Args:
            name: Record name.
            data: Plaintext bytes.

        Raises:
            ValidationError: If credentials bytes are not a JSON object.
            ValueError: If the name is invalid.
        """
        path = self.path_for(name)
        if name == CREDENTIALS:
            validate_credentials(data)
        envelope = self._box.seal(bytes(data))
        self._write_atomic(path, envelope)
        logger.debug("Vault put: record=%s", name)

    def get(self, name: str) -> bytes:
        """Read and open the record ``name``.

        Raises:
            NotFoundError: If the record does not exist.
            MalformedEnvelopeError: If the file is too short to be an envelope.
            IntegrityError: If the envelope does not authenticate.
        """
        path = self.path_for(name)
        try:
            envelope = path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(name) from None
        return self._box.open(envelope)

    def delete(self, name: str) -> None:
        """Remove the record ``name``; succeeds when it is already absent."""
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        logger.debug("Vault delete: record=%s", name)

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def names(self) -> list[str]:
        """List stored record names, sorted."""
        return sorted(
            p.stem for p in self._base_dir.glob(f"*{RECORD_SUFFIX}")
            if p.is_file() and _NAME_PATTERN.match(p.stem)
        )

    # ------------------------------------------------------------------
    # Credentials helpers
    # ------------------------------------------------------------------

    def store_credentials(self, raw: bytes) -> None:
        """Validate and seal the OAuth client configuration."""
        self.put(CREDENTIALS, raw)

    def load_credentials(self) -> bytes:
        return self.get(CREDENTIALS)

    def setup_from_file(self, credentials_path: Union[str, Path]) -> None:
        """Seal a downloaded OAuth client secret file into the store.

        Args:
            credentials_path: Path of the client secret JSON file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValidationError: If the file is not a JSON object.
        """
        raw = Path(credentials_path).expanduser().read_bytes()
        self.store_credentials(raw)
        logger.info("Stored sealed credentials from %s", credentials_path)

    def cleanup(self, names: Optional[list[str]] = None) -> None:
        """Remove the credentials and token records (or the given ones)."""
        for name in names or (CREDENTIALS, TOKEN):
            self.delete(name)
        logger.info("Vault cleanup complete in %s", self._base_dir)
