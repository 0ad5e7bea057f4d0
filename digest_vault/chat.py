"""
Chat completions call site.

Posts one chat request through ``RetryingInvoker``. Classification:
    200 with choices                → Success(content of the first choice)
    200 without choices / not JSON  → Fatal
    429, 5xx, transport errors      → Retryable
    anything else (401, 400, ...)   → Fatal
"""
import os
import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Optional

import aiohttp
import orjson

from .exceptions import ValidationError
from .remote import decode_json, request_outcome, status_failure
from .retry import FatalFailure, Outcome, RetryingInvoker, RetryPolicy, Success

logger = logging.getLogger("digest.chat")

DEFAULT_BASE_URL = "https://api.openai.com"


def classify_chat_response(status: int, body: bytes) -> Outcome:
    if status != 200:
        return status_failure(status, body)
    payload = decode_json(body)
    if not isinstance(payload, dict):
        return FatalFailure(reason="chat response is not a JSON object", status=status)
    choices = payload.get("choices")
    if not choices:
        return FatalFailure(reason="no choices", status=status)
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        return FatalFailure(reason="no usable content", status=status)
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        return FatalFailure(reason="no usable content", status=status)
    return Success(content)


class ChatClient:
    """Minimal chat-completions client with retry and backoff."""

    def __init__(
        self,
        api_key: str,
        policy: Optional[RetryPolicy] = None,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[aiohttp.ClientSession] = None,
        invoker: Optional[RetryingInvoker] = None,
    ):
        if not api_key:
            raise ValidationError("missing OPENAI_API_KEY")
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/v1/chat/completions"
        self._session = session
        self._invoker = invoker or RetryingInvoker(policy)

    @classmethod
    def from_env(cls, policy: Optional[RetryPolicy] = None) -> "ChatClient":
        return cls(os.environ.get("OPENAI_API_KEY", ""), policy=policy)

    async def complete(
        self,
        model: str,
        messages: Sequence[Mapping[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 800,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """Send one chat request and return the first choice's content.

        Raises:
            FatalCallError: Authentication, malformed request, or empty answer.
            ExhaustedRetriesError: Rate limited or failing server throughout.
            CancelledError: If ``cancel`` is set.
        """
        logger.info(
            "Calling chat model %s temperature: %.1f max_tokens: %d",
            model, temperature, max_tokens,
        )
        body = orjson.dumps({
            "model": model,
            "messages": [dict(m) for m in messages],
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        })
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        session = self._session
        owned = session is None
        if owned:
            session = aiohttp.ClientSession()
        try:
            async def attempt() -> Outcome:
                return await request_outcome(
                    session, "POST", self._url, classify_chat_response,
                    data=body, headers=headers,
                )
            return await self._invoker.invoke(attempt, cancel=cancel, label="chat completion")
        finally:
            if owned:
                await session.close()
