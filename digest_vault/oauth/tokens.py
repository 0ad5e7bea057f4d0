"""
OAuth tokens and their validity.

A token is either absent, valid or expired. ``expiry`` is the only
authority: a token whose expiry is at or before *now* is expired, with no
extra clock-skew grace. A token without an expiry never expires.
"""
from enum import Enum
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import orjson
import pydantic
from pydantic import BaseModel, Field, field_validator

from ..exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenState(str, Enum):
    ABSENT = "absent"
    VALID = "valid"
    EXPIRED = "expired"


class OAuthToken(BaseModel):
    """Access/refresh token pair. Replaced whole, never mutated."""

    access_token: str = Field(min_length=1)
    refresh_token: str = ""
    token_type: str = "Bearer"
    expiry: Optional[datetime] = None

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("expiry")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive expiries as UTC and the zero time as no expiry."""
        if v is None or v.year <= 1:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def __repr__(self) -> str:
        return f"<OAuthToken type={self.token_type} expiry={self.expiry}>"

    __str__ = __repr__

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if self.expiry is None:
            return True
        return self.expiry > (now or utcnow())

    @property
    def authorization(self) -> str:
        """Value for the ``Authorization`` header."""
        token_type = self.token_type or "Bearer"
        if token_type.lower() == "bearer":
            token_type = "Bearer"
        return f"{token_type} {self.access_token}"

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json"))

    @classmethod
    def from_json(cls, data: bytes) -> "OAuthToken":
        """Decode a stored token.

        Raises:
            ValidationError: If the record is not a token.
        """
        try:
            return cls.model_validate_json(data)
        except pydantic.ValidationError as err:
            raise ValidationError(f"stored token is unreadable: {err}") from err

    @classmethod
    def from_response(
        cls,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
        previous: Optional["OAuthToken"] = None,
    ) -> "OAuthToken":
        """Build a token from a token endpoint response.

        ``expires_in`` (seconds) is converted to an absolute expiry. A
        refresh response without ``refresh_token`` keeps the previous one.

        Raises:
            ValidationError: If the response has no access token or its
                ``expires_in`` is not a usable number of seconds.
        """
        now = now or utcnow()
        expiry = None
        expires_in = payload.get("expires_in")
        if expires_in not in (None, ""):
            try:
                expiry = now + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError, OverflowError) as err:
                raise ValidationError(f"invalid expires_in: {expires_in!r}") from err
        refresh_token = payload.get("refresh_token") or (
            previous.refresh_token if previous else ""
        )
        try:
            return cls(
                access_token=payload.get("access_token") or "",
                refresh_token=refresh_token,
                token_type=payload.get("token_type") or "Bearer",
                expiry=expiry,
            )
        except pydantic.ValidationError as err:
            raise ValidationError(f"token response is missing fields: {err}") from err


def classify_token(
    token: Optional[OAuthToken],
    now: Optional[datetime] = None,
) -> TokenState:
    """Return the lifecycle state of ``token`` at ``now``."""
    if token is None:
        return TokenState.ABSENT
    if token.is_valid(now):
        return TokenState.VALID
    return TokenState.EXPIRED
