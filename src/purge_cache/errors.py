"""Exception hierarchy for the purge-cache service.

StoreError and PublishError surface to callers as internal errors.
AuthorizationError subclasses and InvalidContinuationError are client errors.
EntityAlreadyExistsError is raised by the store on a duplicate create and is
consumed by the merge path; it never reaches an HTTP client.
"""

from __future__ import annotations


class PurgeCacheError(Exception):
    pass


class StoreError(PurgeCacheError):
    """Any failure of the durable record store."""


class EntityAlreadyExistsError(StoreError):
    pass


class EntityNotFoundError(StoreError):
    pass


class ModifyConflictError(StoreError):
    """Optimistic update kept losing to concurrent writers."""


class InvalidContinuationError(StoreError):
    pass


class PublishError(PurgeCacheError):
    """The broadcast backend refused or failed to take a message."""


class AuthorizationError(PurgeCacheError):
    status_code = 403
    code = "InsufficientScopes"


class AuthenticationFailed(AuthorizationError):
    status_code = 401
    code = "AuthenticationFailed"


class InsufficientScopes(AuthorizationError):
    def __init__(self, required: str) -> None:
        super().__init__(f"Client is missing required scope: {required}")
        self.required = required


class OutputValidationError(PurgeCacheError):
    """A reply did not match its declared schema."""
