"""Structured log event name constants for the listing registry.

Every listing mutation emits a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the value
surfaces as ``extra.event``, which makes per-event queries in a log
aggregator trivial.

Usage example::

    import logging
    from kosfinder.core import events

    logger = logging.getLogger(__name__)

    logger.info("Created kos %d", kos_id, extra={"event": events.LISTING_CREATED})
"""

from __future__ import annotations

__all__ = [
    "LISTING_CREATED",
    "LISTING_UPDATED",
    "LISTING_DELETED",
    "LISTING_STATUS_CHANGED",
    "LISTING_IMAGES_UPDATED",
    "LISTING_UNAUTHORIZED",
    "SLUG_CONFLICT_RETRY",
    "FACILITIES_REPLACED",
    "BLOB_CLEANUP_FAILED",
]

# ---------------------------------------------------------------------------
# Listing lifecycle
# ---------------------------------------------------------------------------

#: A listing row (and its facilities) was committed.
LISTING_CREATED: str = "LISTING_CREATED"

#: A partial update was committed.
LISTING_UPDATED: str = "LISTING_UPDATED"

#: A listing row was deleted (children removed by cascade).
LISTING_DELETED: str = "LISTING_DELETED"

#: An admin toggled the active flag.
LISTING_STATUS_CHANGED: str = "LISTING_STATUS_CHANGED"

#: Cover / gallery image references were replaced.
LISTING_IMAGES_UPDATED: str = "LISTING_IMAGES_UPDATED"

#: A mutation was rejected by the ownership/role check.
LISTING_UNAUTHORIZED: str = "LISTING_UNAUTHORIZED"

# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------

#: An insert lost a slug race; retrying with the next candidate.
SLUG_CONFLICT_RETRY: str = "SLUG_CONFLICT_RETRY"

#: The facility association set of a listing was replaced.
FACILITIES_REPLACED: str = "FACILITIES_REPLACED"

#: Best-effort image deletion failed after a listing delete; ignored.
BLOB_CLEANUP_FAILED: str = "BLOB_CLEANUP_FAILED"
