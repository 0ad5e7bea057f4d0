"""
Error taxonomy for the credential store, token lifecycle and retry layer.

Cryptographic and storage errors are never downgraded: they propagate to the
caller, who decides whether to fall back to interactive re-authorization.
"""
from typing import Any, Optional


class VaultError(Exception):
    """Base class for every error raised by digest_vault."""


class MalformedEnvelopeError(VaultError):
    """Envelope is structurally invalid (too short); likely corruption."""


class IntegrityError(VaultError):
    """Authentication tag did not verify.

    A wrong passphrase and tampered data are indistinguishable here.
    """


class NotFoundError(VaultError):
    """The named record does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Secret record '{name}' not found")
        self.name = name


class ValidationError(VaultError):
    """Input failed structural validation before it was sealed or used."""


class AuthorizationStateError(ValidationError):
    """The anti-forgery state echoed by the authorization reply is wrong."""


class ReauthorizationRequiredError(VaultError):
    """The stored grant can no longer be refreshed."""

    def __init__(self, reason: str):
        super().__init__(
            f"Stored authorization is no longer valid ({reason}). "
            "Run the interactive authorization setup again to grant access."
        )
        self.reason = reason


class CancelledError(VaultError):
    """The caller asked for an in-flight operation to be aborted."""


class RemoteCallError(VaultError):
    """A remote call did not produce a usable result."""

    def __init__(self, message: str, failure: Any = None, attempts: int = 0):
        super().__init__(message)
        self.failure = failure
        self.attempts = attempts

    @property
    def status(self) -> Optional[int]:
        """HTTP status of the last failure, when one was recorded."""
        return getattr(self.failure, "status", None)


class FatalCallError(RemoteCallError):
    """The call site classified the response as not worth retrying."""


class ExhaustedRetriesError(RemoteCallError):
    """Every allowed attempt ended in a retryable failure."""
