"""
Vault Configuration — Passphrase, storage location and validated settings.

The configuration is built once, usually through ``StoreConfig.from_env``,
and passed to ``SecretStore``. Nothing else in the package reads the
environment for store settings.

Environment variables:
    CREDENTIALS_PASSPHRASE = <passphrase>          (required)
    CREDENTIALS_DIR        = <directory>           (optional)
    VAULT_CIPHER_BACKEND   = aesgcm | chacha20     (optional)

Security Note:
    Never log the passphrase. ``SecretStr`` keeps it out of reprs.
"""
import os
import logging
from pathlib import Path
from email.utils import parseaddr
from collections.abc import Mapping
from typing import Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

from ..exceptions import ValidationError

logger = logging.getLogger("digest.vault")

DEFAULT_DIR_NAME = ".secure_newsletters"

REQUIRED_ENVIRONMENT = {
    "OPENAI_API_KEY": "OpenAI API key for summarization",
    "TO_EMAIL": "Destination email address",
    "CREDENTIALS_PASSPHRASE": "Passphrase for credential encryption",
}


def default_base_dir() -> Path:
    """Return the default storage directory under the user's home."""
    return Path.home() / DEFAULT_DIR_NAME


class StoreConfig(BaseModel):
    """Validated secret store configuration."""

    passphrase: SecretStr
    base_dir: Path = Field(default_factory=default_base_dir)
    cipher_backend: str = Field(default="aesgcm")
    kdf_iterations: int = Field(default=100_000, ge=100_000)
    require_state: bool = Field(default=False)

    model_config = {"frozen": True}

    @field_validator("passphrase")
    @classmethod
    def validate_passphrase(cls, v: SecretStr) -> SecretStr:
        """Reject an empty passphrase."""
        if not v.get_secret_value():
            raise ValueError("passphrase is required")
        return v

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("base_dir")
    @classmethod
    def expand_base_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StoreConfig":
        """Create StoreConfig by loading values from environment.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            Populated StoreConfig instance.

        Raises:
            ValidationError: If the passphrase is missing.
        """
        env = os.environ if environ is None else environ
        passphrase = env.get("CREDENTIALS_PASSPHRASE", "")
        if not passphrase:
            raise ValidationError(
                "CREDENTIALS_PASSPHRASE environment variable is not set"
            )
        values = {
            "passphrase": passphrase,
            "cipher_backend": env.get("VAULT_CIPHER_BACKEND", "aesgcm"),
        }
        if env.get("CREDENTIALS_DIR"):
            values["base_dir"] = Path(env["CREDENTIALS_DIR"])
        return cls(**values)


def validate_environment(environ: Optional[Mapping[str, str]] = None) -> None:
    """Check that every required environment variable is set.

    Also checks that ``TO_EMAIL`` holds a plausible address.

    Args:
        environ: Mapping to read instead of ``os.environ``.

    Raises:
        ValidationError: On the first missing variable or a bad address.
    """
    env = os.environ if environ is None else environ
    for name, description in REQUIRED_ENVIRONMENT.items():
        if not env.get(name):
            raise ValidationError(
                f"required environment variable {name} not set ({description})"
            )
    _, address = parseaddr(env["TO_EMAIL"])
    local, _, domain = address.partition("@")
    if not local or not domain or " " in address:
        raise ValidationError(f"invalid TO_EMAIL format: {env['TO_EMAIL']!r}")
