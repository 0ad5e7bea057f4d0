"""Digest Vault.

Sealed OAuth credentials, a self-refreshing token lifecycle and a shared
retry policy for the rate-limited APIs the newsletter digest talks to.
"""
from .version import __version__
from .exceptions import (
    VaultError,
    MalformedEnvelopeError,
    IntegrityError,
    NotFoundError,
    ValidationError,
    AuthorizationStateError,
    ReauthorizationRequiredError,
    CancelledError,
    RemoteCallError,
    FatalCallError,
    ExhaustedRetriesError,
)
from .retry import (
    RetryPolicy,
    RetryingInvoker,
    Success,
    RetryableFailure,
    FatalFailure,
    invoke,
)
from .vault import SecretStore, StoreConfig, SealedBox
from .oauth import TokenLifecycle, OAuthToken

__all__ = [
    "__version__",
    "VaultError",
    "MalformedEnvelopeError",
    "IntegrityError",
    "NotFoundError",
    "ValidationError",
    "AuthorizationStateError",
    "ReauthorizationRequiredError",
    "CancelledError",
    "RemoteCallError",
    "FatalCallError",
    "ExhaustedRetriesError",
    "RetryPolicy",
    "RetryingInvoker",
    "Success",
    "RetryableFailure",
    "FatalFailure",
    "invoke",
    "SecretStore",
    "StoreConfig",
    "SealedBox",
    "TokenLifecycle",
    "OAuthToken",
]
