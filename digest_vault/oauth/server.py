"""
Authorization Server client — the authorization-code and refresh grants.

Only the subset of OAuth2 needed to keep one user's token alive is
implemented: building the consent URL, exchanging an authorization code,
and refreshing an access token. Token endpoint calls go through
``RetryingInvoker`` with the classification below.

Token endpoint classification:
    200 with access_token                  → Success
    200 without access_token               → Fatal
    429, 5xx, transport errors, timeouts   → Retryable
    invalid_grant / invalid_client /
    unauthorized_client on refresh         → ReauthorizationRequiredError
    anything else                          → Fatal

Security Note:
    Never log tokens, codes or the client secret.
"""
import asyncio
import logging
from datetime import datetime
from urllib.parse import urlencode
from collections.abc import Iterable
from typing import Any, Optional

import aiohttp

from .credentials import ClientCredentials
from .tokens import OAuthToken, utcnow
from ..exceptions import (
    FatalCallError,
    ReauthorizationRequiredError,
    ValidationError,
)
from ..remote import decode_json, request_outcome, status_failure
from ..retry import (
    FatalFailure,
    Outcome,
    RetryingInvoker,
    RetryPolicy,
    Success,
)

logger = logging.getLogger("digest.oauth")

GMAIL_READONLY = "https://www.googleapis.com/auth/gmail.readonly"
GMAIL_MODIFY = "https://www.googleapis.com/auth/gmail.modify"
GMAIL_SEND = "https://www.googleapis.com/auth/gmail.send"
DEFAULT_SCOPES = (GMAIL_READONLY, GMAIL_MODIFY, GMAIL_SEND)

# Out-of-band redirect used when the credentials file registers none.
OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"

REAUTHORIZE_ERRORS = frozenset({
    "invalid_grant",
    "invalid_client",
    "unauthorized_client",
})


def classify_token_response(status: int, body: bytes) -> Outcome:
    """Classify a token endpoint response."""
    payload = decode_json(body)
    if status == 200:
        if isinstance(payload, dict) and payload.get("access_token"):
            return Success(payload)
        return FatalFailure(reason="token response has no access_token", status=status)
    if status in (400, 401) and isinstance(payload, dict):
        code = payload.get("error")
        if code in REAUTHORIZE_ERRORS:
            description = payload.get("error_description") or code
            return FatalFailure(
                reason=f"{code}: {description}",
                status=status,
                error=ReauthorizationRequiredError(f"{code}: {description}"),
            )
    return status_failure(status, body)


class AuthorizationServer:
    """Token endpoint client for one OAuth client configuration."""

    def __init__(
        self,
        credentials: ClientCredentials,
        policy: Optional[RetryPolicy] = None,
        session: Optional[aiohttp.ClientSession] = None,
        invoker: Optional[RetryingInvoker] = None,
    ):
        self.credentials = credentials
        self._invoker = invoker or RetryingInvoker(policy)
        self._session = session

    @property
    def redirect_uri(self) -> str:
        return self.credentials.redirect_uri or OOB_REDIRECT_URI

    def authorization_url(self, scopes: Iterable[str], state: str) -> str:
        """Consent URL asking for offline access (a refresh token)."""
        params = {
            "client_id": self.credentials.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        sep = "&" if "?" in self.credentials.auth_uri else "?"
        return f"{self.credentials.auth_uri}{sep}{urlencode(params)}"

    async def _post_token(
        self,
        form: dict[str, str],
        label: str,
        cancel: Optional[asyncio.Event],
    ) -> dict[str, Any]:
        form = {
            **form,
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
        }
        headers = {"Accept": "application/json"}
        session = self._session
        owned = session is None
        if owned:
            session = aiohttp.ClientSession()
        try:
            async def attempt() -> Outcome:
                return await request_outcome(
                    session, "POST", self.credentials.token_uri,
                    classify_token_response, data=form, headers=headers,
                )
            try:
                return await self._invoker.invoke(attempt, cancel=cancel, label=label)
            except FatalCallError as err:
                if isinstance(err.failure.error, ReauthorizationRequiredError):
                    raise ReauthorizationRequiredError(err.failure.error.reason) from None
                raise
        finally:
            if owned:
                await session.close()

    async def exchange_code(
        self,
        code: str,
        cancel: Optional[asyncio.Event] = None,
        now: Optional[datetime] = None,
    ) -> OAuthToken:
        """Exchange a one-time authorization code for a token.

        Raises:
            ValidationError: If the code is empty.
            ReauthorizationRequiredError: If the code was rejected.
            FatalCallError: On any other non-retryable response.
            ExhaustedRetriesError: If the endpoint kept failing transiently.
        """
        code = code.strip()
        if not code:
            raise ValidationError("authorization code is empty")
        payload = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            "authorization code exchange",
            cancel,
        )
        logger.info("Exchanged authorization code for a new token")
        return OAuthToken.from_response(payload, now=now or utcnow())

    async def refresh(
        self,
        token: OAuthToken,
        cancel: Optional[asyncio.Event] = None,
        now: Optional[datetime] = None,
    ) -> OAuthToken:
        """Use the refresh grant to replace an expired token.

        Raises:
            ReauthorizationRequiredError: If there is no refresh token or
                the grant was revoked.
            FatalCallError: On any other non-retryable response.
            ExhaustedRetriesError: If the endpoint kept failing transiently.
        """
        if not token.refresh_token:
            raise ReauthorizationRequiredError("token has no refresh_token")
        payload = await self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": token.refresh_token,
            },
            "token refresh",
            cancel,
        )
        logger.info("Refreshed access token")
        return OAuthToken.from_response(payload, now=now or utcnow(), previous=token)
