"""Single HTTP attempts turned into retry outcomes."""
import logging
from collections.abc import Callable
from typing import Any

import aiohttp
import orjson

from .retry import (
    FatalFailure,
    Outcome,
    RetryableFailure,
    classify_status,
)

logger = logging.getLogger("digest.retry")

Classifier = Callable[[int, bytes], Outcome]


def decode_json(body: bytes) -> Any:
    """Decode a JSON body, returning None when it is not JSON."""
    try:
        return orjson.loads(body)
    except orjson.JSONDecodeError:
        return None


def status_failure(status: int, body: bytes, limit: int = 200) -> Outcome:
    """Fallback classification for a non-success status.

    429 and 5xx are retryable, everything else is fatal.
    """
    excerpt = body[:limit].decode("utf-8", errors="replace")
    reason = f"HTTP {status}: {excerpt}"
    if classify_status(status) == "retryable":
        return RetryableFailure(reason=reason, status=status)
    return FatalFailure(reason=reason, status=status)


async def request_outcome(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    classify: Classifier,
    **kwargs: Any,
) -> Outcome:
    """Issue one request and classify the response.

    Connection-level failures (refused, reset, DNS, truncated payloads)
    are reported as retryable; the response itself is classified by the
    call site's ``classify(status, body)``.
    """
    try:
        async with session.request(method, url, **kwargs) as resp:
            body = await resp.read()
            status = resp.status
    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as err:
        logger.debug("%s %s transport error: %s", method, url, err)
        return RetryableFailure(reason=f"transport error: {err}", error=err)
    return classify(status, body)
