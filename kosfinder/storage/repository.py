"""Kos listing repository.

Provides :class:`KosRepository`, the single data-access object for the
``kos_listings`` table and the tables hanging off it (``kos_facilities`` and
``reviews``).

Write methods do **not** commit.  Listing writes always come in groups (row +
facility set) that must land together, so the transaction boundary belongs to
the caller; see :func:`kosfinder.storage.database.transaction`.

Typical usage::

    from kosfinder.storage.database import open_db, transaction
    from kosfinder.storage.repository import KosRepository

    async def run() -> None:
        conn = await open_db()
        repo = KosRepository(conn)

        async with transaction(conn, "create kos"):
            kos_id = await repo.insert_listing(columns, owner_id="u1", slug="kos-melati")
            await repo.insert_facilities(kos_id, facilities)

        await conn.close()
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from kosfinder.core.criteria import KosFilters
from kosfinder.core.exceptions import SlugConflictError
from kosfinder.core.ids import ListingId, ListingRef
from kosfinder.core.models import (
    FacilityDetail,
    FacilityInput,
    KosImages,
    KosListing,
    KosListingWithOwner,
    KosMarker,
    OwnerSummary,
    Review,
)

__all__ = ["KosRepository", "utc_now"]

logger = logging.getLogger(__name__)

#: Columns a caller may write through :meth:`KosRepository.insert_listing` or
#: :meth:`KosRepository.update_listing`.  ``id``, ``slug``, ``owner_id`` and
#: the timestamps are managed by the repository itself.
_WRITABLE_COLUMNS: frozenset[str] = frozenset(
    {
        "title",
        "description",
        "address",
        "gender",
        "monthly_price",
        "latitude",
        "longitude",
        "distance_to_its_km",
        "available_rooms",
        "total_rooms",
        "cover_image",
        "cover_image_url",
        "images",
        "image_urls",
        "is_active",
    }
)

_JSON_COLUMNS: frozenset[str] = frozenset({"images", "image_urls"})

_MARKER_COLUMNS = (
    "id, title, slug, gender, monthly_price, latitude, longitude, "
    "distance_to_its_km, available_rooms, cover_image_url"
)


def utc_now() -> str:
    """Current UTC time as the ISO-8601 string stored in timestamp columns."""
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _encode_columns(columns: Mapping[str, Any]) -> dict[str, Any]:
    """Convert model values to SQLite-storable values and reject unknown keys."""
    unknown = set(columns) - _WRITABLE_COLUMNS
    if unknown:
        raise ValueError(f"Not writable kos_listings columns: {sorted(unknown)}")
    encoded: dict[str, Any] = {}
    for name, value in columns.items():
        if name in _JSON_COLUMNS:
            value = json.dumps(list(value or []))
        elif name == "is_active":
            value = 1 if value else 0
        elif name == "gender" and value is not None:
            value = str(value)
        encoded[name] = value
    return encoded


def _listing_dict(row: aiosqlite.Row) -> dict[str, Any]:
    data = dict(row)
    for name in data.keys() & _JSON_COLUMNS:
        data[name] = json.loads(data[name] or "[]")
    if "is_active" in data:
        data["is_active"] = bool(data["is_active"])
    return data


def _listing_from_row(row: aiosqlite.Row) -> KosListing:
    return KosListing.model_validate(_listing_dict(row))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class KosRepository:
    """Data-access object for ``kos_listings``, ``kos_facilities`` and ``reviews``.

    It owns no connection lifecycle; the caller must supply an open
    :class:`aiosqlite.Connection` (see
    :func:`~kosfinder.storage.database.open_db`) and close it when done.

    Args:
        conn: Open, configured :class:`aiosqlite.Connection` with foreign keys
            enabled.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Listing reads
    # ------------------------------------------------------------------

    async def slug_exists(self, slug: str) -> bool:
        """Return ``True`` if any listing (active or not) already uses *slug*."""
        cursor = await self._conn.execute(
            "SELECT 1 FROM kos_listings WHERE slug = ? LIMIT 1",
            (slug,),
        )
        return await cursor.fetchone() is not None

    async def get_listing(self, kos_id: int) -> KosListing | None:
        """Fetch a listing by id regardless of its active flag."""
        cursor = await self._conn.execute(
            "SELECT * FROM kos_listings WHERE id = ?",
            (kos_id,),
        )
        row = await cursor.fetchone()
        return _listing_from_row(row) if row is not None else None

    async def get_owner_id(self, kos_id: int) -> str | None:
        """Return the owner of *kos_id*, or ``None`` if the listing does not exist."""
        cursor = await self._conn.execute(
            "SELECT owner_id FROM kos_listings WHERE id = ?",
            (kos_id,),
        )
        row = await cursor.fetchone()
        return row["owner_id"] if row is not None else None

    async def find_listing(
        self,
        ref: ListingRef,
        *,
        include_inactive: bool = False,
    ) -> KosListing | None:
        """Resolve an id-or-slug reference to a listing.

        Args:
            ref: A :class:`~kosfinder.core.ids.ListingId` or
                :class:`~kosfinder.core.ids.ListingSlug`.
            include_inactive: When ``False`` inactive listings are treated as
                absent.

        Returns:
            The listing, or ``None`` if nothing visible matches.
        """
        column = "id" if isinstance(ref, ListingId) else "slug"
        sql = f"SELECT * FROM kos_listings WHERE {column} = ?"
        if not include_inactive:
            sql += " AND is_active = 1"
        cursor = await self._conn.execute(sql, (ref.value,))
        row = await cursor.fetchone()
        return _listing_from_row(row) if row is not None else None

    async def list_markers(self, filters: KosFilters) -> list[KosMarker]:
        """Return map markers for active listings matching *filters*.

        Ordered by ascending distance to campus; listings without a distance
        sort last, ties broken by id.
        """
        clauses, params = filters.to_sql()
        where = " AND ".join(["is_active = 1", *clauses])
        cursor = await self._conn.execute(
            f"""
            SELECT {_MARKER_COLUMNS}
            FROM kos_listings
            WHERE {where}
            ORDER BY distance_to_its_km IS NULL, distance_to_its_km ASC, id ASC
            """,
            params,
        )
        rows = await cursor.fetchall()
        return [KosMarker.model_validate(dict(row)) for row in rows]

    async def list_by_owner(self, owner_id: str) -> list[KosListing]:
        """All listings of *owner_id*, active or not, newest first."""
        cursor = await self._conn.execute(
            """
            SELECT * FROM kos_listings
            WHERE owner_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (owner_id,),
        )
        rows = await cursor.fetchall()
        return [_listing_from_row(row) for row in rows]

    async def list_all_with_owner(self) -> list[KosListingWithOwner]:
        """Every listing with its owner's name and email, newest first."""
        cursor = await self._conn.execute(
            """
            SELECT k.*, u.name AS owner_name, u.email AS owner_email
            FROM kos_listings AS k
            LEFT JOIN users AS u ON u.id = k.owner_id
            ORDER BY k.created_at DESC, k.id DESC
            """
        )
        rows = await cursor.fetchall()
        result: list[KosListingWithOwner] = []
        for row in rows:
            data = _listing_dict(row)
            name = data.pop("owner_name")
            email = data.pop("owner_email")
            owner = (
                OwnerSummary(id=data["owner_id"], name=name or "", email=email)
                if email is not None
                else None
            )
            result.append(KosListingWithOwner.model_validate({**data, "owner": owner}))
        return result

    async def get_images(self, kos_id: int) -> KosImages | None:
        cursor = await self._conn.execute(
            """
            SELECT cover_image, cover_image_url, images, image_urls
            FROM kos_listings WHERE id = ?
            """,
            (kos_id,),
        )
        row = await cursor.fetchone()
        return KosImages.model_validate(_listing_dict(row)) if row is not None else None

    # ------------------------------------------------------------------
    # Listing writes (caller commits)
    # ------------------------------------------------------------------

    async def insert_listing(
        self,
        columns: Mapping[str, Any],
        *,
        owner_id: str,
        slug: str,
    ) -> int:
        """Insert a listing row and return its new id.

        Args:
            columns: Writable column values (see ``_WRITABLE_COLUMNS``).
            owner_id: Owning user id.
            slug: Candidate slug; must not be in use.

        Returns:
            The store-assigned listing id.

        Raises:
            :exc:`~kosfinder.core.exceptions.SlugConflictError`: If *slug* was
                taken between the caller's probe and this insert.
            aiosqlite.IntegrityError: For any other constraint violation.
        """
        now = utc_now()
        values = {
            **_encode_columns(columns),
            "owner_id": owner_id,
            "slug": slug,
            "created_at": now,
            "updated_at": now,
        }
        names = ", ".join(values)
        placeholders = ", ".join("?" * len(values))
        try:
            cursor = await self._conn.execute(
                f"INSERT INTO kos_listings ({names}) VALUES ({placeholders})",
                tuple(values.values()),
            )
        except aiosqlite.IntegrityError as exc:
            if "kos_listings.slug" in str(exc):
                raise SlugConflictError(slug) from exc
            raise

        kos_id = cursor.lastrowid
        logger.debug("Inserted kos %s (slug=%s owner=%s)", kos_id, slug, owner_id)
        return kos_id

    async def update_listing(self, kos_id: int, columns: Mapping[str, Any]) -> bool:
        """Apply a partial update and bump ``updated_at``.

        Returns:
            ``True`` if a row was updated, ``False`` if *kos_id* does not exist.
        """
        values = {**_encode_columns(columns), "updated_at": utc_now()}
        assignments = ", ".join(f"{name} = ?" for name in values)
        cursor = await self._conn.execute(
            f"UPDATE kos_listings SET {assignments} WHERE id = ?",
            (*values.values(), kos_id),
        )
        logger.debug("Updated kos %d columns=%s", kos_id, sorted(columns))
        return cursor.rowcount > 0

    async def delete_listing(self, kos_id: int) -> bool:
        """Delete a listing; facilities and reviews go with it via FK cascade."""
        cursor = await self._conn.execute(
            "DELETE FROM kos_listings WHERE id = ?",
            (kos_id,),
        )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Facility associations
    # ------------------------------------------------------------------

    async def facility_details(self, kos_id: int) -> list[FacilityDetail]:
        """Facilities of *kos_id* joined with their type, ordered by name."""
        cursor = await self._conn.execute(
            """
            SELECT ft.id, ft.name, ft.icon, kf.extra_price, kf.is_available
            FROM kos_facilities AS kf
            JOIN facility_types AS ft ON ft.id = kf.facility_id
            WHERE kf.kos_id = ?
            ORDER BY ft.name ASC
            """,
            (kos_id,),
        )
        rows = await cursor.fetchall()
        return [
            FacilityDetail.model_validate({**dict(row), "is_available": bool(row["is_available"])})
            for row in rows
        ]

    async def insert_facilities(
        self,
        kos_id: int,
        facilities: Iterable[FacilityInput],
    ) -> int:
        """Insert one association row per facility; returns the number inserted."""
        rows = [
            (kos_id, f.facility_id, 1 if f.is_available else 0, f.extra_price)
            for f in facilities
        ]
        if not rows:
            return 0
        await self._conn.executemany(
            """
            INSERT INTO kos_facilities (kos_id, facility_id, is_available, extra_price)
            VALUES (?, ?, ?, ?)
            """,
            rows,
        )
        return len(rows)

    async def delete_facilities(self, kos_id: int) -> int:
        cursor = await self._conn.execute(
            "DELETE FROM kos_facilities WHERE kos_id = ?",
            (kos_id,),
        )
        return cursor.rowcount

    async def replace_facilities(
        self,
        kos_id: int,
        facilities: Iterable[FacilityInput],
    ) -> int:
        """Delete every association of *kos_id*, then insert *facilities*."""
        removed = await self.delete_facilities(kos_id)
        added = await self.insert_facilities(kos_id, facilities)
        logger.debug("Replaced facilities of kos %d (-%d +%d)", kos_id, removed, added)
        return added

    async def existing_facility_ids(self, facility_ids: Iterable[int]) -> set[int]:
        """Return the subset of *facility_ids* present in ``facility_types``."""
        ids = sorted(set(facility_ids))
        if not ids:
            return set()
        placeholders = ",".join("?" * len(ids))
        cursor = await self._conn.execute(
            f"SELECT id FROM facility_types WHERE id IN ({placeholders})",
            ids,
        )
        rows = await cursor.fetchall()
        return {row[0] for row in rows}

    # ------------------------------------------------------------------
    # Owner & reviews
    # ------------------------------------------------------------------

    async def owner_summary(self, owner_id: str) -> OwnerSummary | None:
        cursor = await self._conn.execute(
            "SELECT id, name, email FROM users WHERE id = ?",
            (owner_id,),
        )
        row = await cursor.fetchone()
        return OwnerSummary.model_validate(dict(row)) if row is not None else None

    async def reviews_for(self, kos_id: int) -> list[Review]:
        """Reviews of *kos_id* with reviewer names, newest first."""
        cursor = await self._conn.execute(
            """
            SELECT r.id, r.kos_id, r.user_id, r.rating, r.comment, r.created_at,
                   u.name AS reviewer_name
            FROM reviews AS r
            LEFT JOIN users AS u ON u.id = r.user_id
            WHERE r.kos_id = ?
            ORDER BY r.created_at DESC, r.id DESC
            """,
            (kos_id,),
        )
        rows = await cursor.fetchall()
        return [Review.model_validate(dict(row)) for row in rows]
