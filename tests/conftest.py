"""Shared fixtures for the vault, OAuth and retry tests."""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import orjson
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from digest_vault.retry import RetryPolicy
from digest_vault.vault import SecretStore, StoreConfig


FIXED_NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def store_config(tmp_path):
    """Store configuration rooted in a temporary directory."""
    return StoreConfig(passphrase="correct-horse", base_dir=tmp_path / "vault")


@pytest.fixture
def store(store_config):
    """A fresh SecretStore."""
    return SecretStore(store_config)


@pytest.fixture
def fast_policy():
    """Retry policy without waits."""
    return RetryPolicy(
        max_attempts=3, backoff_min=0, backoff_max=0, jitter_bound=0,
        attempt_timeout=5,
    )


def client_secret_json(token_uri: str = "https://oauth2.example.com/token") -> bytes:
    """Client secret file in the provider's download format."""
    return orjson.dumps({
        "installed": {
            "client_id": "client-123.apps.example.com",
            "project_id": "digest-test",
            "auth_uri": "https://accounts.example.com/o/oauth2/auth",
            "token_uri": token_uri,
            "client_secret": "s3cr3t",
            "redirect_uris": ["http://localhost"],
        }
    })


@asynccontextmanager
async def fake_http(*routes):
    """Run an in-process aiohttp server for ``(method, path, handler)`` routes."""
    app = web.Application()
    for method, path, handler in routes:
        app.router.add_route(method, path, handler)
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()
