"""OAuth2 authorization-code and refresh lifecycle backed by the vault."""

from .credentials import ClientCredentials
from .tokens import OAuthToken, TokenState, classify_token
from .server import AuthorizationServer, DEFAULT_SCOPES
from .lifecycle import (
    AuthorizedSession,
    TokenLifecycle,
    console_prompt,
    parse_authorization_reply,
)

__all__ = [
    "ClientCredentials",
    "OAuthToken",
    "TokenState",
    "classify_token",
    "AuthorizationServer",
    "DEFAULT_SCOPES",
    "AuthorizedSession",
    "TokenLifecycle",
    "console_prompt",
    "parse_authorization_reply",
]
