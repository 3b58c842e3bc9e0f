"""Listing registry: lifecycle and ownership-scoped mutation of kos listings.

:class:`ListingRegistry` is the single entry point the web boundary uses for
anything touching ``kos_listings``.  It combines the repository with three
rules the storage layer knows nothing about:

1. **Authorization**: Every mutation goes through
   :func:`~kosfinder.core.auth.can_mutate` (owner or admin).  A failure is an
   :class:`~kosfinder.core.exceptions.UnauthorizedError`, never a generic
   storage error, so the boundary can answer 403 rather than 500.
2. **Slug uniqueness**: The base slug is probed and then inserted; the
   UNIQUE constraint catches any writer that slipped in between, and the
   insert is retried with the next candidate.  Registry mutations are
   serialised with an :class:`asyncio.Lock`, and their commits share the
   connection-wide lock of :func:`~kosfinder.storage.database.unit_of_work`
   with every other writer on the same SQLite connection.
3. **Atomic facility sync**: A listing row and its facility set are written
   in one transaction.  Either both land or neither does.

Typical usage::

    registry = ListingRegistry(conn, campus=settings.campus, blob_store=store)

    kos = await registry.create_listing(request, owner_id=caller.id)
    markers = await registry.list_public_markers(KosFilters(gender="PUTRI"))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import aiosqlite
from pydantic import ValidationError

from kosfinder.blobs.store import BlobStore
from kosfinder.core import events
from kosfinder.core.auth import can_mutate
from kosfinder.core.criteria import KosFilters
from kosfinder.core.exceptions import (
    BlobStoreError,
    ListingNotFoundError,
    SlugConflictError,
    UnauthorizedError,
    ValidationFailedError,
)
from kosfinder.core.geo import distance_to_campus_km
from kosfinder.core.ids import parse_listing_ref, slug_candidates, slugify
from kosfinder.core.models import (
    Caller,
    CreateKosRequest,
    FacilityInput,
    KosImages,
    KosListing,
    KosListingDetails,
    KosListingWithOwner,
    KosMarker,
    UpdateKosRequest,
    check_gallery_aligned,
)
from kosfinder.storage.database import storage_errors, transaction
from kosfinder.storage.repository import KosRepository
from kosfinder.storage.users import UserRepository

__all__ = [
    "ListingRegistry",
    "parse_create_request",
    "parse_update_request",
]

logger = logging.getLogger(__name__)

#: Listing columns holding blob references.
_IMAGE_REF_COLUMNS = frozenset({"cover_image", "images"})


def _image_references(listing: KosListing) -> list[str]:
    return KosImages.model_construct(
        cover_image=listing.cover_image, images=listing.images
    ).references()


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _validation_failed(exc: ValidationError) -> ValidationFailedError:
    fields = sorted({".".join(str(p) for p in err["loc"]) or "payload" for err in exc.errors()})
    return ValidationFailedError(
        f"Invalid kos data: {', '.join(fields)}",
        errors=exc.errors(include_url=False, include_context=False),
    )


def parse_create_request(payload: Mapping[str, Any]) -> CreateKosRequest:
    """Validate a raw create payload.

    Raises:
        ValidationFailedError: If a required field is missing or malformed.
    """
    try:
        return CreateKosRequest.model_validate(payload)
    except ValidationError as exc:
        raise _validation_failed(exc) from exc


def parse_update_request(listing_id: int, payload: Mapping[str, Any]) -> UpdateKosRequest:
    """Validate a raw partial-update payload for *listing_id*.

    The id always comes from the route, never from the body.

    Raises:
        ValidationFailedError: If a supplied field is malformed.
    """
    try:
        return UpdateKosRequest.model_validate({**payload, "id": listing_id})
    except ValidationError as exc:
        raise _validation_failed(exc) from exc


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ListingRegistry:
    """Create, read, update and delete kos listings.

    Args:
        conn: Open, configured :class:`aiosqlite.Connection`.
        campus: ``(latitude, longitude)`` used to derive
            ``distance_to_its_km``.
        blob_store: Optional image store for best-effort cleanup of orphaned
            images.  ``None`` skips cleanup.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        *,
        campus: tuple[float, float],
        blob_store: BlobStore | None = None,
    ) -> None:
        self._conn = conn
        self._repo = KosRepository(conn)
        self._users = UserRepository(conn)
        self._campus = campus
        self._blob_store = blob_store
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public reads
    # ------------------------------------------------------------------

    async def list_public_markers(self, filters: KosFilters | None = None) -> list[KosMarker]:
        """Map markers for active listings, nearest to campus first."""
        filters = filters or KosFilters()
        with storage_errors("fetch kos listings"):
            markers = await self._repo.list_markers(filters)
        logger.debug("Listed %d marker(s) (filters=%s)", len(markers), filters.model_dump())
        return markers

    async def get_listing_details(
        self,
        id_or_slug: str | int,
        allow_inactive: bool = False,
    ) -> KosListingDetails | None:
        """Fetch a listing with owner, facilities, reviews and average rating.

        Args:
            id_or_slug: Numeric id (or its string form) or slug.
            allow_inactive: Return inactive listings too (owner/admin views).

        Returns:
            The enriched listing, or ``None`` if nothing visible matches.
        """
        ref = parse_listing_ref(id_or_slug)
        with storage_errors("fetch kos details"):
            listing = await self._repo.find_listing(ref, include_inactive=allow_inactive)
            if listing is None:
                return None
            owner = await self._repo.owner_summary(listing.owner_id)
            facilities = await self._repo.facility_details(listing.id)
            reviews = await self._repo.reviews_for(listing.id)

        ratings = [review.rating for review in reviews]
        average_rating = sum(ratings) / len(ratings) if ratings else 0.0

        return KosListingDetails(
            **listing.model_dump(),
            owner=owner,
            facilities=facilities,
            reviews=reviews,
            average_rating=average_rating,
            total_reviews=len(reviews),
        )

    async def list_by_owner(self, owner_id: str) -> list[KosListing]:
        """Every listing of *owner_id*, active or not, newest first."""
        with storage_errors("fetch owner kos listings"):
            return await self._repo.list_by_owner(owner_id)

    async def list_by_owner_email(self, email: str) -> list[KosListing]:
        """Like :meth:`list_by_owner`, resolving the owner by email first."""
        with storage_errors("fetch owner kos listings"):
            user = await self._users.get_by_email(email)
            if user is None:
                return []
            return await self._repo.list_by_owner(user.id)

    async def list_all_listings(self) -> list[KosListingWithOwner]:
        """Admin view: every listing with its owner, newest first.

        The caller-role check is the boundary's job.
        """
        with storage_errors("fetch all kos listings"):
            return await self._repo.list_all_with_owner()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_listing(self, request: CreateKosRequest, owner_id: str) -> KosListing:
        """Persist a new listing owned by *owner_id* under a unique slug.

        The listing row and its facility rows are committed together.

        Raises:
            ValidationFailedError: If a facility id does not exist or is
                listed twice.
            StorageError: If the store rejects the write.
        """
        columns = request.listing_columns()
        columns["distance_to_its_km"] = distance_to_campus_km(
            request.latitude, request.longitude, self._campus
        )
        base_slug = slugify(request.title)

        async with self._write_lock:
            await self._check_facilities(request.facilities)
            async with transaction(self._conn, "create kos listing"):
                kos_id, slug = await self._insert_with_unique_slug(columns, owner_id, base_slug)
                if request.facilities:
                    await self._repo.insert_facilities(kos_id, request.facilities)
            with storage_errors("fetch created kos listing"):
                created = await self._repo.get_listing(kos_id)

        assert created is not None
        logger.info(
            "Created kos %d (slug=%s owner=%s facilities=%d)",
            kos_id,
            slug,
            owner_id,
            len(request.facilities or []),
            extra={"event": events.LISTING_CREATED, "kos_id": kos_id},
        )
        return created

    async def update_listing(self, request: UpdateKosRequest, caller: Caller) -> KosListing:
        """Apply a partial update on behalf of *caller*.

        Only fields present in *request* change.  The slug is never
        regenerated.  A supplied ``facilities`` list (even empty) replaces the
        whole facility set; an omitted one leaves it untouched.
        Blobs no longer referenced by the cover or gallery are deleted
        best-effort after the commit.

        Raises:
            UnauthorizedError: Caller is neither owner nor admin, or (for
                non-admins) the listing does not exist.
            ListingNotFoundError: Admin caller, listing does not exist.
            ValidationFailedError: Merged room counts or gallery lists are
                inconsistent, or a facility id is unknown.
            StorageError: If the store rejects the write.
        """
        kos_id = request.id
        columns = request.changed_columns()

        async with self._write_lock:
            await self._authorize(caller, kos_id, "update")
            with storage_errors("fetch kos listing"):
                current = await self._repo.get_listing(kos_id)
            if current is None:
                raise ListingNotFoundError(kos_id)

            total = columns.get("total_rooms", current.total_rooms)
            available = columns.get("available_rooms", current.available_rooms)
            if available > total:
                raise ValidationFailedError(
                    f"available_rooms ({available}) cannot exceed total_rooms ({total})"
                )
            try:
                check_gallery_aligned(
                    columns.get("images", current.images),
                    columns.get("image_urls", current.image_urls),
                )
            except ValueError as exc:
                raise ValidationFailedError(str(exc)) from exc
            if "latitude" in columns or "longitude" in columns:
                columns["distance_to_its_km"] = distance_to_campus_km(
                    columns.get("latitude", current.latitude),
                    columns.get("longitude", current.longitude),
                    self._campus,
                )
            if request.replaces_facilities:
                await self._check_facilities(request.facilities)

            async with transaction(self._conn, "update kos listing"):
                await self._repo.update_listing(kos_id, columns)
                if request.replaces_facilities:
                    await self._repo.replace_facilities(kos_id, request.facilities or [])
                    logger.debug(
                        "Replaced facilities of kos %d",
                        kos_id,
                        extra={"event": events.FACILITIES_REPLACED, "kos_id": kos_id},
                    )
            with storage_errors("fetch updated kos listing"):
                updated = await self._repo.get_listing(kos_id)

        assert updated is not None
        dropped: list[str] = []
        if _IMAGE_REF_COLUMNS & columns.keys():
            keep = set(_image_references(updated))
            dropped = [ref for ref in _image_references(current) if ref not in keep]
        logger.info(
            "Updated kos %d by %s (fields=%s)",
            kos_id,
            caller.id,
            sorted(columns),
            extra={"event": events.LISTING_UPDATED, "kos_id": kos_id},
        )
        await self._cleanup_blobs(dropped)
        return updated

    async def delete_listing(self, listing_id: int, caller: Caller) -> None:
        """Delete a listing on behalf of *caller*.

        Facility associations and reviews are removed by the store's
        ``ON DELETE CASCADE``.  Images are then deleted from the blob store on
        a best-effort basis.

        Raises:
            UnauthorizedError: Caller is neither owner nor admin.
            ListingNotFoundError: Admin caller, listing does not exist.
            StorageError: If the store rejects the delete.
        """
        async with self._write_lock:
            await self._authorize(caller, listing_id, "delete")
            with storage_errors("fetch kos images"):
                images = await self._repo.get_images(listing_id)
            async with transaction(self._conn, "delete kos listing"):
                deleted = await self._repo.delete_listing(listing_id)
            if not deleted:
                raise ListingNotFoundError(listing_id)

        logger.info(
            "Deleted kos %d by %s",
            listing_id,
            caller.id,
            extra={"event": events.LISTING_DELETED, "kos_id": listing_id},
        )
        if images is not None:
            await self._cleanup_blobs(images.references())

    async def set_listing_active(self, listing_id: int, is_active: bool) -> None:
        """Show or hide a listing.  Admin-only; the role check is the boundary's.

        Raises:
            ListingNotFoundError: If *listing_id* does not exist.
        """
        async with self._write_lock:
            async with transaction(self._conn, "update kos status"):
                updated = await self._repo.update_listing(listing_id, {"is_active": is_active})
        if not updated:
            raise ListingNotFoundError(listing_id)
        logger.info(
            "Set kos %d active=%s",
            listing_id,
            is_active,
            extra={"event": events.LISTING_STATUS_CHANGED, "kos_id": listing_id},
        )

    async def update_listing_images(
        self,
        listing_id: int,
        images: KosImages,
        caller: Caller,
    ) -> None:
        """Replace the cover and gallery images of a listing.

        Blobs referenced before but not after the change are deleted
        best-effort once the new references are committed.

        Raises:
            UnauthorizedError: Caller is neither owner nor admin.
            ListingNotFoundError: Admin caller, listing does not exist.
        """
        async with self._write_lock:
            await self._authorize(caller, listing_id, "update")
            with storage_errors("fetch kos images"):
                previous = await self._repo.get_images(listing_id)
            if previous is None:
                raise ListingNotFoundError(listing_id)
            async with transaction(self._conn, "update kos images"):
                await self._repo.update_listing(listing_id, images.model_dump())

        logger.info(
            "Updated images of kos %d (%d gallery)",
            listing_id,
            len(images.images),
            extra={"event": events.LISTING_IMAGES_UPDATED, "kos_id": listing_id},
        )
        keep = set(images.references())
        await self._cleanup_blobs([ref for ref in previous.references() if ref not in keep])

    async def get_listing_images(self, listing_id: int, caller: Caller) -> KosImages:
        """Image columns of a listing, for the owner's edit form.

        Raises:
            UnauthorizedError: Caller is neither owner nor admin.
            ListingNotFoundError: Admin caller, listing does not exist.
        """
        await self._authorize(caller, listing_id, "view")
        with storage_errors("fetch kos images"):
            images = await self._repo.get_images(listing_id)
        if images is None:
            raise ListingNotFoundError(listing_id)
        return images

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _authorize(self, caller: Caller, listing_id: int, action: str) -> None:
        """Raise unless *caller* may *action* the listing; admins always pass.

        A missing listing fails the check for non-admins, so ownership of
        non-existent ids is not disclosed.
        """
        with storage_errors("check kos ownership"):
            owner_id = await self._repo.get_owner_id(listing_id)
        if not can_mutate(caller, owner_id):
            logger.warning(
                "Rejected %s of kos %d by %s (owner=%s)",
                action,
                listing_id,
                caller.id,
                owner_id,
                extra={"event": events.LISTING_UNAUTHORIZED, "kos_id": listing_id},
            )
            raise UnauthorizedError(action, listing_id)
        if owner_id is None:
            raise ListingNotFoundError(listing_id)

    async def _insert_with_unique_slug(
        self,
        columns: dict[str, Any],
        owner_id: str,
        base_slug: str,
    ) -> tuple[int, str]:
        """Insert under the first free candidate of *base_slug*.

        Candidates already visible in the store are skipped by a probe; a
        candidate taken by a concurrent writer after the probe surfaces as
        :class:`SlugConflictError` and the next one is tried.
        """
        for slug in slug_candidates(base_slug):
            if await self._repo.slug_exists(slug):
                continue
            try:
                kos_id = await self._repo.insert_listing(columns, owner_id=owner_id, slug=slug)
            except SlugConflictError:
                logger.info(
                    "Slug %s taken concurrently; trying next candidate",
                    slug,
                    extra={"event": events.SLUG_CONFLICT_RETRY},
                )
                continue
            return kos_id, slug
        raise AssertionError("slug_candidates is unbounded")

    async def _check_facilities(self, facilities: Sequence[FacilityInput] | None) -> None:
        """Reject duplicate or unknown facility ids before anything is written."""
        if not facilities:
            return
        ids = [f.facility_id for f in facilities]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValidationFailedError(f"Duplicate facility ids: {duplicates}")
        with storage_errors("check facility types"):
            known = await self._repo.existing_facility_ids(ids)
        unknown = sorted(set(ids) - known)
        if unknown:
            raise ValidationFailedError(f"Unknown facility ids: {unknown}")

    async def _cleanup_blobs(self, references: Sequence[str]) -> None:
        """Delete *references* from the blob store; failures are logged only."""
        if not references:
            return
        if self._blob_store is None:
            logger.debug("No blob store configured; leaving %d blob(s)", len(references))
            return
        try:
            await self._blob_store.delete_many(references)
        except BlobStoreError as exc:
            logger.warning(
                "Could not delete %d orphaned blob(s): %s",
                len(references),
                exc,
                extra={"event": events.BLOB_CLEANUP_FAILED},
            )
