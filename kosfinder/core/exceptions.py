"""KosFinder exception taxonomy.

Every custom exception inherits from :class:`KosFinderError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    KosFinderError
    ├── ConfigError
    ├── RegistryError
    │   ├── ValidationFailedError
    │   ├── UnauthorizedError
    │   └── ListingNotFoundError
    ├── StorageError
    │   └── SlugConflictError
    └── BlobStoreError

Each class carries an ``http_status`` and a ``public_message``.  The web
boundary maps an exception to a response with those two attributes alone and
never has to inspect the message text; ``public_message`` for 5xx errors is
deliberately generic so data-store details do not reach anonymous callers.

Usage:

    from kosfinder.core.exceptions import UnauthorizedError

    raise UnauthorizedError("update", listing_id=42)
"""

from __future__ import annotations

import logging

__all__ = [
    "KosFinderError",
    # Config
    "ConfigError",
    # Registry
    "RegistryError",
    "ValidationFailedError",
    "UnauthorizedError",
    "ListingNotFoundError",
    # Storage
    "StorageError",
    "SlugConflictError",
    # Blob store
    "BlobStoreError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class KosFinderError(Exception):
    """Root exception for all KosFinder errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible for precise error
    handling.
    """

    http_status: int = 500
    public_message: str = "Internal server error"


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(KosFinderError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - The blob store is used but ``BLOB_API_URL`` is not set.
        - Campus coordinates fall outside the valid lat/lng range.
    """


# ---------------------------------------------------------------------------
# Registry layer
# ---------------------------------------------------------------------------


class RegistryError(KosFinderError):
    """Base class for caller-correctable errors raised by the listing registry."""


class ValidationFailedError(RegistryError):
    """Raised when a create/update payload is missing or malformed.

    Never retried automatically; the caller must fix the input.

    Args:
        message: Human-readable description of what is wrong.
        errors: Optional structured error list (pydantic ``errors()`` shape).
    """

    http_status = 400

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        self.errors = errors or []
        self.public_message = message
        super().__init__(message)


class UnauthorizedError(RegistryError):
    """Raised when the caller neither owns the listing nor holds the admin role.

    Distinct from an *unauthenticated* caller, which the boundary rejects
    before the registry is reached.

    Args:
        action: The attempted mutation (``"update"``, ``"delete"``, …).
        listing_id: Target listing id.
    """

    http_status = 403

    def __init__(self, action: str, listing_id: int) -> None:
        self.action = action
        self.listing_id = listing_id
        self.public_message = f"Unauthorized: you can only {action} your own kos listings"
        super().__init__(f"{self.public_message} (listing {listing_id})")


class ListingNotFoundError(RegistryError):
    """Raised when a mutation targets a listing id that does not exist.

    Read paths do not raise this; they return ``None`` instead.

    Args:
        listing_id: The id that failed to resolve.
    """

    http_status = 404

    def __init__(self, listing_id: int) -> None:
        self.listing_id = listing_id
        self.public_message = "Kos not found"
        super().__init__(f"Kos listing not found: {listing_id!r}")


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(KosFinderError):
    """Raised when a database or persistence operation fails.

    The original driver exception is chained as ``__cause__``.

    Args:
        message: Human-readable error description.
    """


class SlugConflictError(StorageError):
    """Raised when an insert loses the race for a slug to a concurrent writer.

    This is an *expected* condition under concurrency and is caught by the
    registry, which retries with the next candidate slug.

    Args:
        slug: The slug that was already taken.
    """

    def __init__(self, slug: str) -> None:
        self.slug = slug
        super().__init__(f"Slug already taken: {slug!r}")


# ---------------------------------------------------------------------------
# Blob store
# ---------------------------------------------------------------------------


class BlobStoreError(KosFinderError):
    """Raised when the blob/image store rejects a request or is unreachable.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code from the blob service, if available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Blob store error{detail}: {message}")
