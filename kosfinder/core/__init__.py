"""Core domain models, settings, logging configuration, and shared utilities."""

from kosfinder.core.auth import OAuthProfile, can_mutate, resolve_caller
from kosfinder.core.criteria import KosFilters
from kosfinder.core.exceptions import (
    BlobStoreError,
    ConfigError,
    KosFinderError,
    ListingNotFoundError,
    RegistryError,
    SlugConflictError,
    StorageError,
    UnauthorizedError,
    ValidationFailedError,
)
from kosfinder.core.ids import ListingId, ListingRef, ListingSlug, parse_listing_ref, slugify
from kosfinder.core.logging_config import JsonFormatter, configure_logging, request_context
from kosfinder.core.models import (
    Caller,
    CreateKosRequest,
    FacilityInput,
    Gender,
    KosImages,
    KosListing,
    KosListingDetails,
    KosMarker,
    UpdateKosRequest,
    UserRole,
)
from kosfinder.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "request_context",
    "JsonFormatter",
    # Domain models
    "Gender",
    "UserRole",
    "Caller",
    "FacilityInput",
    "KosListing",
    "KosListingDetails",
    "KosMarker",
    "KosImages",
    "CreateKosRequest",
    "UpdateKosRequest",
    # Identifiers
    "ListingId",
    "ListingSlug",
    "ListingRef",
    "parse_listing_ref",
    "slugify",
    # Filters
    "KosFilters",
    # Auth
    "OAuthProfile",
    "can_mutate",
    "resolve_caller",
    # Settings
    "Settings",
    # Exceptions: base
    "KosFinderError",
    # Exceptions: config
    "ConfigError",
    # Exceptions: registry
    "RegistryError",
    "ValidationFailedError",
    "UnauthorizedError",
    "ListingNotFoundError",
    # Exceptions: storage
    "StorageError",
    "SlugConflictError",
    # Exceptions: blob store
    "BlobStoreError",
]
