"""
OAuth client configuration read from the sealed ``credentials`` record.

Accepts the client secret file downloaded from the provider console::

    {"installed": {"client_id": ..., "client_secret": ..., "auth_uri": ...,
                   "token_uri": ..., "redirect_uris": [...]}}

A ``web`` section is accepted in place of ``installed``.
"""
import pydantic
from pydantic import BaseModel, Field

from ..exceptions import ValidationError
from ..vault.store import validate_credentials

DEFAULT_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


class ClientCredentials(BaseModel):
    """Client id/secret and endpoints of the Authorization Server."""

    client_id: str = Field(min_length=1)
    client_secret: str = ""
    auth_uri: str = DEFAULT_AUTH_URI
    token_uri: str = DEFAULT_TOKEN_URI
    redirect_uris: list[str] = Field(default_factory=list)

    model_config = {"frozen": True, "extra": "ignore"}

    @property
    def redirect_uri(self) -> str:
        """First registered redirect URI (empty when none)."""
        return self.redirect_uris[0] if self.redirect_uris else ""

    @classmethod
    def from_json(cls, raw: bytes) -> "ClientCredentials":
        """Parse the credentials record.

        Raises:
            ValidationError: If the JSON has no usable client section.
        """
        data = validate_credentials(raw)
        section = data.get("installed") or data.get("web")
        if not isinstance(section, dict):
            raise ValidationError(
                "credentials must contain an 'installed' or 'web' section"
            )
        try:
            return cls.model_validate(section)
        except pydantic.ValidationError as err:
            raise ValidationError(f"invalid OAuth client configuration: {err}") from err
