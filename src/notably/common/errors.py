"""Typed errors raised by the fact store.

Every error carries the name of the store operation that failed and an HTTP
status code, so an API layer can map failures without re-deriving them:

    try:
        store.get_fact(fact_id)
    except FactStoreError as e:
        return JSONResponse({"error": str(e)}, status_code=e.status_code)

Backing store failures are wrapped in BackingStoreError; the adapter's
original exception is kept as ``__cause__``.
"""

from typing import Optional


class FactStoreError(Exception):
    """Base class for all fact store errors."""

    status_code = 500

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def with_operation(self, operation: str) -> "FactStoreError":
        """Attribute the error to the public operation that surfaced it."""
        self.operation = operation
        return self

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation} failed: {self.message}"
        return self.message


class ValidationError(FactStoreError):
    """Malformed input: missing fact, empty id, bad options."""

    status_code = 400


class NotFoundError(FactStoreError):
    """No fact exists for the requested key."""

    status_code = 404


class NotInitializedError(FactStoreError):
    """Backing store has not been provisioned yet."""

    status_code = 503


class InvalidPaginationTokenError(FactStoreError):
    """Continuation token is malformed or belongs to a different query."""

    status_code = 400


class CanceledError(FactStoreError):
    """Operation was cancelled or its deadline expired."""

    status_code = 499


class BackingStoreError(FactStoreError):
    """Opaque passthrough of an adapter failure (e.g. transient I/O)."""

    status_code = 502


def is_not_found(exc: Optional[BaseException]) -> bool:
    """Return True if the error indicates a record was not found."""
    return isinstance(exc, NotFoundError)
