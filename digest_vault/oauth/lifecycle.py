"""
TokenLifecycle — Keeps one OAuth token valid and persisted.

State machine over the ``token`` record:

    Absent  ── interactive authorization ──▶ Valid
    Valid   ── wall clock passes expiry  ──▶ Expired
    Expired ── refresh grant             ──▶ Valid

Every new token is written to the store before it is returned. A refresh
grant that the server rejects permanently removes the stored token (back to
Absent) and raises ``ReauthorizationRequiredError``.

The interactive step is an injected ``prompt`` callable: it receives the
consent URL and returns what the resource owner pasted: either the bare
authorization code or the full redirect URL.
"""
import asyncio
import inspect
import logging
import secrets
from datetime import datetime
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from urllib.parse import parse_qs
from typing import Any, Optional, Union

import aiohttp

from .credentials import ClientCredentials
from .server import DEFAULT_SCOPES, AuthorizationServer
from .tokens import OAuthToken, TokenState, classify_token, utcnow
from ..exceptions import (
    AuthorizationStateError,
    NotFoundError,
    ReauthorizationRequiredError,
    ValidationError,
)
from ..retry import RetryPolicy
from ..vault.store import TOKEN, SecretStore

logger = logging.getLogger("digest.oauth")

PromptFn = Callable[[str], Union[str, Awaitable[str]]]
ServerFactory = Callable[..., AuthorizationServer]


def console_prompt(url: str) -> str:
    """Show the consent URL on the terminal and read the pasted code."""
    print("Authorize this app, then paste the authorization code:")
    print(url)
    return input("Enter authorization code: ").strip()


def parse_authorization_reply(reply: str) -> tuple[str, Optional[str]]:
    """Split a pasted reply into (code, state).

    A bare code has no state. A redirect URL or query string is parsed for
    ``code`` and ``state``.

    Raises:
        ValidationError: If the reply carries an ``error`` or no code.
    """
    reply = reply.strip()
    if "=" not in reply:
        if not reply:
            raise ValidationError("authorization code is empty")
        return reply, None
    query = reply.split("?", 1)[1] if "?" in reply else reply
    params = parse_qs(query.split("#", 1)[0])
    if "error" in params:
        raise ValidationError(f"authorization was denied: {params['error'][0]}")
    code = params.get("code", [""])[0]
    if not code:
        raise ValidationError("authorization reply contains no code")
    state = params.get("state", [None])[0]
    return code, state


class TokenLifecycle:
    """Obtains, validates and refreshes the token kept in ``store``."""

    def __init__(
        self,
        store: SecretStore,
        prompt: PromptFn = console_prompt,
        policy: Optional[RetryPolicy] = None,
        server_factory: ServerFactory = AuthorizationServer,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], datetime] = utcnow,
        cancel: Optional[asyncio.Event] = None,
    ):
        self._store = store
        self._prompt = prompt
        self._policy = policy or RetryPolicy()
        self._server_factory = server_factory
        self._session = session
        self._clock = clock
        self._cancel = cancel
        self._token: Optional[OAuthToken] = None
        self._require_state = store.config.require_state

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def store_credentials(self, raw: bytes) -> None:
        """Seal the OAuth client configuration into the store."""
        ClientCredentials.from_json(raw)
        self._store.store_credentials(raw)

    def load_token(self) -> Optional[OAuthToken]:
        """Return the stored token, or None when there is none."""
        try:
            raw = self._store.get(TOKEN)
        except NotFoundError:
            return None
        return OAuthToken.from_json(raw)

    def save_token(self, token: OAuthToken) -> None:
        self._store.put(TOKEN, token.to_json())
        self._token = token
        logger.debug("Persisted token (expiry=%s)", token.expiry)

    def forget_token(self) -> None:
        """Drop the stored token so the next use starts from Absent."""
        self._token = None
        self._store.delete(TOKEN)

    def cleanup(self) -> None:
        """Remove stored credentials and token."""
        self._token = None
        self._store.cleanup()

    def state(self) -> TokenState:
        if self._token is None:
            self._token = self.load_token()
        return classify_token(self._token, self._clock())

    def _server(self) -> AuthorizationServer:
        credentials = ClientCredentials.from_json(self._store.load_credentials())
        return self._server_factory(
            credentials, policy=self._policy, session=self._session,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _ask(self, url: str) -> str:
        if inspect.iscoroutinefunction(self._prompt):
            reply = await self._prompt(url)
        else:
            reply = await asyncio.to_thread(self._prompt, url)
            if inspect.isawaitable(reply):
                reply = await reply
        return reply

    async def authorize(self, scopes: Iterable[str] = DEFAULT_SCOPES) -> OAuthToken:
        """Run the interactive authorization-code flow (Absent → Valid).

        Raises:
            AuthorizationStateError: If the reply echoes a different state,
                or carries none while ``require_state`` is set.
            ValidationError: If the reply holds no usable code.
        """
        server = self._server()
        state = secrets.token_hex(32)
        url = server.authorization_url(scopes, state)
        logger.info("Starting interactive authorization")
        code, echoed = parse_authorization_reply(await self._ask(url))
        if echoed is None:
            if self._require_state:
                raise AuthorizationStateError(
                    "paste the full redirect URL so the state can be verified"
                )
        elif not secrets.compare_digest(echoed, state):
            raise AuthorizationStateError(
                "authorization state does not match; discard this reply and retry"
            )
        token = await server.exchange_code(code, cancel=self._cancel, now=self._clock())
        self.save_token(token)
        return token

    async def refresh(self, token: OAuthToken) -> OAuthToken:
        """Replace an expired token using its refresh grant (Expired → Valid)."""
        try:
            new_token = await self._server().refresh(
                token, cancel=self._cancel, now=self._clock(),
            )
        except ReauthorizationRequiredError as err:
            logger.warning("Refresh rejected, stored token removed: %s", err.reason)
            self.forget_token()
            raise
        self.save_token(new_token)
        return new_token

    async def valid_token(self, scopes: Iterable[str] = DEFAULT_SCOPES) -> OAuthToken:
        """Return a token that is valid now, authorizing or refreshing first."""
        state = self.state()
        if state is TokenState.ABSENT:
            return await self.authorize(scopes)
        if state is TokenState.EXPIRED:
            logger.info("Access token expired at %s, refreshing", self._token.expiry)
            return await self.refresh(self._token)
        return self._token

    async def get_client(
        self,
        scopes: Iterable[str] = DEFAULT_SCOPES,
        timeout: Optional[aiohttp.ClientTimeout] = None,
    ) -> "AuthorizedSession":
        """Return an HTTP client that sends a valid token with every request.

        The token is validated once here so setup problems surface
        immediately, then again before each request.
        """
        scopes = tuple(scopes)
        await self.valid_token(scopes)
        return AuthorizedSession(self, scopes, timeout=timeout)


class AuthorizedSession:
    """aiohttp session wrapper adding ``Authorization`` to every request.

    Usage::

        async with await lifecycle.get_client() as client:
            async with client.get(url) as resp:
                data = await resp.json()
    """

    def __init__(
        self,
        lifecycle: TokenLifecycle,
        scopes: Iterable[str] = DEFAULT_SCOPES,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
    ):
        self._lifecycle = lifecycle
        self._scopes = tuple(scopes)
        self._session = session
        self._owned = session is None
        self._timeout = timeout or aiohttp.ClientTimeout(total=60)

    async def __aenter__(self) -> "AuthorizedSession":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._owned and self._session is not None:
            await self._session.close()
            self._session = None

    async def headers(self, extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """Request headers carrying a currently valid token."""
        token = await self._lifecycle.valid_token(self._scopes)
        merged = dict(extra or {})
        merged["Authorization"] = token.authorization
        return merged

    @asynccontextmanager
    async def request(
        self, method: str, url: str, **kwargs: Any,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        kwargs["headers"] = await self.headers(kwargs.get("headers"))
        async with self._ensure_session().request(method, url, **kwargs) as resp:
            yield resp

    def get(self, url: str, **kwargs: Any):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any):
        return self.request("POST", url, **kwargs)
