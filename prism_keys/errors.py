"""Exception taxonomy for the Prism key service.

Authorization and not-found conditions are expected, user-facing outcomes; the
command front-end and the HTTP layer turn them into structured replies. Store
failures are infrastructure faults: they are written to the audit log at ERROR
level and surfaced to callers as a generic transient failure, never retried
automatically.

Validation results are not exceptions; see ``ValidationOutcome``.
"""

from typing import Optional


class KeyServiceError(Exception):
    """Base class for every error raised by the key service."""


class AuthorizationError(KeyServiceError):
    """Caller lacks permission for the requested tier or action (non-retryable)."""

    def __init__(self, message: str, requester_id: Optional[str] = None, tier: Optional[str] = None):
        super().__init__(message)
        self.requester_id = requester_id
        self.tier = tier


class NotFoundError(KeyServiceError):
    """A key, user profile or cooldown marker does not exist."""


class StoreError(KeyServiceError):
    """Persistence failure reported by a ``KeyStore`` implementation."""


class DuplicateKeyError(StoreError):
    """A key record with the same code already exists."""


class IssuanceFailedError(KeyServiceError):
    """Generic transient failure surfaced after an issuance could not complete."""


class OAuthError(KeyServiceError):
    """Dashboard login could not complete against the identity provider."""
