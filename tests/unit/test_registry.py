"""Unit tests for :class:`~kosfinder.registry.ListingRegistry`.

Coverage
--------
* Create: slug derivation and uniqueness (sequential, concurrent, and a
  writer slipping in between probe and insert), campus distance, facility
  validation, and all-or-nothing facility writes even when a sign-in
  commits on the same connection mid-create.
* Reads: public markers (active only, filtered, nearest first), details by id
  or slug with owner, facilities and average rating, owner/admin listings.
* Update: partial semantics, slug stability, replace-or-keep facilities,
  merged room-count and gallery checks, distance recompute, cleanup of
  replaced images, owner/admin authorization.
* Delete: cascade, owner/admin authorization, best-effort blob cleanup.
* Admin status toggle and image replacement.
* Payload parsing into :class:`ValidationFailedError`.
* :func:`~kosfinder.core.auth.resolve_caller` admin promotion.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Sequence
from typing import Any
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from kosfinder.core import events
from kosfinder.core.auth import OAuthProfile, resolve_caller
from kosfinder.core.criteria import KosFilters
from kosfinder.core.exceptions import (
    BlobStoreError,
    ListingNotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationFailedError,
)
from kosfinder.core.geo import distance_to_campus_km
from kosfinder.core.models import Caller, Gender, KosImages, UserRole
from kosfinder.registry import ListingRegistry, parse_create_request, parse_update_request
from kosfinder.storage.database import create_schema
from kosfinder.storage.facilities import FacilityRepository
from kosfinder.storage.users import UserRepository

logger = logging.getLogger(__name__)

CAMPUS = (-7.2819, 112.7949)

OWNER = Caller(id="owner-1")
OTHER = Caller(id="owner-2")
ADMIN = Caller(id="admin-1", role=UserRole.ADMIN)

# Facility type ids created by the ``conn`` fixture, in insertion order.
WIFI, AC, PARKING = 1, 2, 3


# ---------------------------------------------------------------------------
# Fakes / helpers
# ---------------------------------------------------------------------------


class _RecordingBlobStore:
    """Blob store double that records delete calls and can be told to fail."""

    def __init__(self, *, fail: bool = False) -> None:
        self.deleted: list[list[str]] = []
        self.fail = fail

    async def delete_many(self, references: Sequence[str]) -> None:
        self.deleted.append(list(references))
        if self.fail:
            raise BlobStoreError("service unavailable", status_code=503)


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Kos Putri Melati",
        "address": "Jl. Keputih Tegal No. 12, Sukolilo",
        "gender": "PUTRI",
        "monthly_price": 1_200_000,
        "latitude": -7.2905,
        "longitude": 112.7975,
        "total_rooms": 5,
        "available_rooms": 2,
    }
    payload.update(overrides)
    return payload


async def _create(registry: ListingRegistry, owner_id: str = "owner-1", **overrides: Any):
    return await registry.create_listing(parse_create_request(_payload(**overrides)), owner_id)


async def _count(conn: aiosqlite.Connection, table: str) -> int:
    cursor = await conn.execute(f"SELECT COUNT(*) FROM {table}")
    row = await cursor.fetchone()
    return row[0]


async def _add_review(conn: aiosqlite.Connection, kos_id: int, user_id: str, rating: int) -> None:
    await conn.execute(
        "INSERT INTO reviews (kos_id, user_id, rating, comment, created_at, updated_at) "
        "VALUES (?, ?, ?, 'Bersih', '2026-01-01T00:00:00+00:00', '2026-01-01T00:00:00+00:00')",
        (kos_id, user_id, rating),
    )
    await conn.commit()


@pytest.fixture()
async def conn() -> AsyncGenerator[aiosqlite.Connection, None]:
    """In-memory database seeded with three users and three facility types."""
    connection: aiosqlite.Connection = await aiosqlite.connect(":memory:")
    connection.row_factory = aiosqlite.Row
    await connection.execute("PRAGMA foreign_keys=ON")
    await create_schema(connection)

    users = UserRepository(connection)
    for user_id, name in (("owner-1", "Bu Ani"), ("owner-2", "Pak Budi"), ("admin-1", "Admin")):
        await users.find_or_create(user_id=user_id, email=f"{user_id}@example.com", name=name)
    await users.update_role("admin-1", UserRole.ADMIN)

    facilities = FacilityRepository(connection)
    for name in ("WiFi", "AC", "Parkir Motor"):
        await facilities.create(name)

    try:
        yield connection
    finally:
        await connection.close()


@pytest.fixture()
def blob_store() -> _RecordingBlobStore:
    return _RecordingBlobStore()


@pytest.fixture()
def registry(conn: aiosqlite.Connection, blob_store: _RecordingBlobStore) -> ListingRegistry:
    return ListingRegistry(conn, campus=CAMPUS, blob_store=blob_store)


# ===========================================================================
# Create
# ===========================================================================


class TestCreateListing:
    async def test_persists_with_owner_slug_and_distance(
        self, registry: ListingRegistry
    ) -> None:
        kos = await _create(registry)
        assert kos.id >= 1
        assert kos.owner_id == "owner-1"
        assert kos.slug == "kos-putri-melati"
        assert kos.gender == Gender.PUTRI
        assert kos.is_active is True
        assert kos.distance_to_its_km == distance_to_campus_km(-7.2905, 112.7975, CAMPUS)

    async def test_owner_comes_from_caller_not_payload(self, registry: ListingRegistry) -> None:
        request = parse_create_request(_payload(owner_id="owner-1"))
        kos = await registry.create_listing(request, "owner-2")
        assert kos.owner_id == "owner-2"

    async def test_same_title_gets_numbered_slugs(self, registry: ListingRegistry) -> None:
        slugs = [(await _create(registry)).slug for _ in range(3)]
        assert slugs == ["kos-putri-melati", "kos-putri-melati-1", "kos-putri-melati-2"]

    async def test_short_title_gets_suffix(self, registry: ListingRegistry) -> None:
        assert (await _create(registry, title="@@")).slug == "-kos"
        assert (await _create(registry, title="AB")).slug == "ab-kos"

    async def test_concurrent_creates_get_distinct_slugs(
        self, registry: ListingRegistry
    ) -> None:
        created = await asyncio.gather(*(_create(registry) for _ in range(5)))
        slugs = {kos.slug for kos in created}
        assert len(slugs) == 5

    async def test_slug_taken_after_probe_is_retried(
        self,
        registry: ListingRegistry,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        first = await _create(registry)
        # Simulate a writer that committed between the probe and the insert.
        monkeypatch.setattr(registry._repo, "slug_exists", AsyncMock(return_value=False))

        with caplog.at_level(logging.INFO, logger="kosfinder.registry.listings"):
            second = await _create(registry)

        assert first.slug == "kos-putri-melati"
        assert second.slug == "kos-putri-melati-1"
        assert any(
            getattr(r, "event", None) == events.SLUG_CONFLICT_RETRY for r in caplog.records
        )

    async def test_facilities_persisted(self, registry: ListingRegistry) -> None:
        kos = await _create(
            registry,
            facilities=[
                {"facility_id": WIFI},
                {"facility_id": AC, "extra_price": 150_000, "is_available": False},
            ],
        )
        details = await registry.get_listing_details(kos.id)
        assert details is not None
        assert [(f.name, f.extra_price, f.is_available) for f in details.facilities] == [
            ("AC", 150_000, False),
            ("WiFi", 0, True),
        ]

    async def test_unknown_facility_rejected_before_insert(
        self, registry: ListingRegistry, conn: aiosqlite.Connection
    ) -> None:
        with pytest.raises(ValidationFailedError, match="Unknown facility"):
            await _create(registry, facilities=[{"facility_id": WIFI}, {"facility_id": 99}])
        assert await _count(conn, "kos_listings") == 0

    async def test_duplicate_facility_rejected(self, registry: ListingRegistry) -> None:
        with pytest.raises(ValidationFailedError, match="Duplicate facility"):
            await _create(registry, facilities=[{"facility_id": WIFI}, {"facility_id": WIFI}])

    async def test_facility_failure_rolls_back_listing(
        self,
        registry: ListingRegistry,
        conn: aiosqlite.Connection,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(
            registry._repo,
            "insert_facilities",
            AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error")),
        )
        with pytest.raises(StorageError):
            await _create(registry, facilities=[{"facility_id": WIFI}])
        assert await _count(conn, "kos_listings") == 0
        assert await _count(conn, "kos_facilities") == 0

    async def test_sign_in_during_create_does_not_commit_partial_listing(
        self,
        registry: ListingRegistry,
        conn: aiosqlite.Connection,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        listing_inserted = asyncio.Event()

        async def _slow_failing_insert(*args: Any, **kwargs: Any) -> None:
            listing_inserted.set()
            await asyncio.sleep(0.05)
            raise aiosqlite.OperationalError("disk I/O error")

        async def _sign_in():
            await listing_inserted.wait()
            return await users.find_or_create(
                user_id="owner-3", email="owner-3@example.com", name="Mbak Citra"
            )

        monkeypatch.setattr(registry._repo, "insert_facilities", _slow_failing_insert)
        users = UserRepository(conn)
        created, signed_in = await asyncio.gather(
            _create(registry, facilities=[{"facility_id": WIFI}]),
            _sign_in(),
            return_exceptions=True,
        )

        assert isinstance(created, StorageError)
        assert signed_in.id == "owner-3"
        assert await _count(conn, "kos_listings") == 0
        assert await users.get_by_id("owner-3") is not None


# ===========================================================================
# Reads
# ===========================================================================


class TestReads:
    async def test_markers_only_active_nearest_first(self, registry: ListingRegistry) -> None:
        far = await _create(registry, title="Kos Jauh", latitude=-7.31, longitude=112.80)
        near = await _create(registry, title="Kos Dekat", latitude=-7.2825, longitude=112.795)
        hidden = await _create(registry, title="Kos Tutup")
        await registry.set_listing_active(hidden.id, False)

        markers = await registry.list_public_markers()
        assert [m.id for m in markers] == [near.id, far.id]

    async def test_markers_filtered(self, registry: ListingRegistry) -> None:
        putra = await _create(registry, title="Kos Putra", gender="PUTRA")
        await _create(registry, title="Kos Putri", gender="PUTRI")
        markers = await registry.list_public_markers(KosFilters(gender=Gender.PUTRA))
        assert [m.id for m in markers] == [putra.id]

    async def test_markers_combined_filters(self, registry: ListingRegistry) -> None:
        match = await _create(registry, title="Kos Cocok", monthly_price=950_000)
        await _create(registry, title="Kos Mahal", monthly_price=1_500_000)
        await _create(registry, title="Kos Penuh", monthly_price=900_000, available_rooms=0)
        await _create(registry, title="Kos Putra", gender="PUTRA", monthly_price=800_000)

        filters = KosFilters(gender=Gender.PUTRI, max_price=1_000_000, available_only=True)
        markers = await registry.list_public_markers(filters)
        assert [m.id for m in markers] == [match.id]

    async def test_details_by_id_and_slug(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        by_id = await registry.get_listing_details(kos.id)
        by_text_id = await registry.get_listing_details(str(kos.id))
        by_slug = await registry.get_listing_details("kos-putri-melati")
        assert by_id is not None and by_text_id is not None and by_slug is not None
        assert by_id.id == by_text_id.id == by_slug.id == kos.id
        assert by_id.owner is not None
        assert by_id.owner.name == "Bu Ani"

    async def test_details_average_rating(
        self, registry: ListingRegistry, conn: aiosqlite.Connection
    ) -> None:
        kos = await _create(registry)
        await _add_review(conn, kos.id, "owner-2", 4)
        await _add_review(conn, kos.id, "admin-1", 5)
        details = await registry.get_listing_details(kos.id)
        assert details is not None
        assert details.total_reviews == 2
        assert details.average_rating == pytest.approx(4.5)
        assert {r.reviewer_name for r in details.reviews} == {"Pak Budi", "Admin"}

    async def test_details_without_reviews_rate_zero(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        details = await registry.get_listing_details(kos.id)
        assert details is not None
        assert details.average_rating == 0.0
        assert details.total_reviews == 0

    async def test_details_repeatable(
        self, registry: ListingRegistry, conn: aiosqlite.Connection
    ) -> None:
        kos = await _create(registry, facilities=[{"facility_id": WIFI}])
        await _add_review(conn, kos.id, "owner-2", 4)
        first = await registry.get_listing_details(kos.slug)
        second = await registry.get_listing_details(kos.slug)
        assert first is not None
        assert first == second

    async def test_details_missing_is_none(self, registry: ListingRegistry) -> None:
        assert await registry.get_listing_details(999) is None
        assert await registry.get_listing_details("tidak-ada") is None

    async def test_inactive_details_need_allow_inactive(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        await registry.set_listing_active(kos.id, False)
        assert await registry.get_listing_details(kos.slug) is None
        details = await registry.get_listing_details(kos.slug, allow_inactive=True)
        assert details is not None and details.is_active is False

    async def test_list_by_owner_newest_first_includes_inactive(
        self, registry: ListingRegistry
    ) -> None:
        first = await _create(registry, title="Kos Satu")
        second = await _create(registry, title="Kos Dua")
        await _create(registry, owner_id="owner-2", title="Kos Orang Lain")
        await registry.set_listing_active(first.id, False)

        mine = await registry.list_by_owner("owner-1")
        assert [k.id for k in mine] == [second.id, first.id]

    async def test_list_by_owner_email(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        assert [k.id for k in await registry.list_by_owner_email("owner-1@example.com")] == [
            kos.id
        ]
        assert await registry.list_by_owner_email("nobody@example.com") == []

    async def test_list_all_listings_includes_owner(self, registry: ListingRegistry) -> None:
        await _create(registry)
        await _create(registry, owner_id="owner-2", title="Kos Budi")
        rows = await registry.list_all_listings()
        assert {(r.title, r.owner.email if r.owner else None) for r in rows} == {
            ("Kos Putri Melati", "owner-1@example.com"),
            ("Kos Budi", "owner-2@example.com"),
        }


# ===========================================================================
# Update
# ===========================================================================


class TestUpdateListing:
    async def test_owner_partial_update(self, registry: ListingRegistry) -> None:
        kos = await _create(registry, description="Dekat kampus")
        updated = await registry.update_listing(
            parse_update_request(kos.id, {"monthly_price": 950_000}), OWNER
        )
        assert updated.monthly_price == 950_000
        assert updated.title == kos.title
        assert updated.description == "Dekat kampus"

    async def test_title_change_keeps_slug(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        updated = await registry.update_listing(
            parse_update_request(kos.id, {"title": "Kos Putri Mawar"}), OWNER
        )
        assert updated.title == "Kos Putri Mawar"
        assert updated.slug == "kos-putri-melati"

    async def test_body_id_is_ignored(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        request = parse_update_request(kos.id, {"id": 999, "monthly_price": 1_000_000})
        assert request.id == kos.id

    async def test_other_user_rejected_and_row_unchanged(
        self, registry: ListingRegistry, caplog: pytest.LogCaptureFixture
    ) -> None:
        kos = await _create(registry)
        with caplog.at_level(logging.WARNING, logger="kosfinder.registry.listings"):
            with pytest.raises(UnauthorizedError) as exc_info:
                await registry.update_listing(
                    parse_update_request(kos.id, {"monthly_price": 1}), OTHER
                )
        assert exc_info.value.http_status == 403
        assert any(
            getattr(r, "event", None) == events.LISTING_UNAUTHORIZED for r in caplog.records
        )
        unchanged = await registry.get_listing_details(kos.id)
        assert unchanged is not None and unchanged.monthly_price == 1_200_000

    async def test_admin_may_update_any(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        updated = await registry.update_listing(
            parse_update_request(kos.id, {"available_rooms": 0}), ADMIN
        )
        assert updated.available_rooms == 0
        assert updated.owner_id == "owner-1"

    async def test_missing_listing(self, registry: ListingRegistry) -> None:
        request = parse_update_request(999, {"monthly_price": 1_000_000})
        with pytest.raises(UnauthorizedError):
            await registry.update_listing(request, OWNER)
        with pytest.raises(ListingNotFoundError):
            await registry.update_listing(request, ADMIN)

    async def test_merged_rooms_checked(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)  # total 5, available 2
        with pytest.raises(ValidationFailedError, match="available_rooms"):
            await registry.update_listing(
                parse_update_request(kos.id, {"available_rooms": 6}), OWNER
            )
        with pytest.raises(ValidationFailedError):
            await registry.update_listing(parse_update_request(kos.id, {"total_rooms": 1}), OWNER)

    async def test_coordinates_recompute_distance(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        updated = await registry.update_listing(
            parse_update_request(kos.id, {"latitude": -7.30}), OWNER
        )
        assert updated.distance_to_its_km == distance_to_campus_km(-7.30, 112.7975, CAMPUS)
        assert updated.distance_to_its_km != kos.distance_to_its_km

    async def test_omitted_facilities_untouched(self, registry: ListingRegistry) -> None:
        kos = await _create(registry, facilities=[{"facility_id": WIFI}])
        await registry.update_listing(parse_update_request(kos.id, {"title": "Baru"}), OWNER)
        details = await registry.get_listing_details(kos.id)
        assert details is not None
        assert [f.id for f in details.facilities] == [WIFI]

    async def test_facilities_replaced(self, registry: ListingRegistry) -> None:
        kos = await _create(registry, facilities=[{"facility_id": WIFI}])
        await registry.update_listing(
            parse_update_request(
                kos.id, {"facilities": [{"facility_id": AC}, {"facility_id": PARKING}]}
            ),
            OWNER,
        )
        details = await registry.get_listing_details(kos.id)
        assert details is not None
        assert sorted(f.id for f in details.facilities) == [AC, PARKING]

    async def test_empty_facilities_clears(self, registry: ListingRegistry) -> None:
        kos = await _create(registry, facilities=[{"facility_id": WIFI}])
        await registry.update_listing(parse_update_request(kos.id, {"facilities": []}), OWNER)
        details = await registry.get_listing_details(kos.id)
        assert details is not None and details.facilities == []

    async def test_lone_gallery_list_rejected_and_delete_still_works(
        self, registry: ListingRegistry, blob_store: _RecordingBlobStore
    ) -> None:
        kos = await _create(registry)
        with pytest.raises(ValidationFailedError):
            await registry.update_listing(
                parse_update_request(kos.id, {"images": ["a.jpg", "b.jpg"]}), OWNER
            )
        assert await registry.get_listing_images(kos.id, OWNER) == KosImages()

        await registry.delete_listing(kos.id, OWNER)
        assert await registry.get_listing_details(kos.id, allow_inactive=True) is None
        assert blob_store.deleted == []

    async def test_gallery_lists_sent_together_must_align(self) -> None:
        with pytest.raises(ValidationFailedError):
            parse_update_request(1, {"images": ["a.jpg"], "image_urls": []})

    async def test_replaced_images_cleaned(
        self, registry: ListingRegistry, blob_store: _RecordingBlobStore
    ) -> None:
        kos = await _create(
            registry,
            cover_image="old-cover.jpg",
            images=["keep.jpg", "drop.jpg"],
            image_urls=["https://x/keep.jpg", "https://x/drop.jpg"],
        )
        await registry.update_listing(
            parse_update_request(
                kos.id,
                {
                    "cover_image": "new-cover.jpg",
                    "images": ["keep.jpg"],
                    "image_urls": ["https://x/keep.jpg"],
                },
            ),
            OWNER,
        )
        assert blob_store.deleted == [["old-cover.jpg", "drop.jpg"]]

    async def test_non_image_update_leaves_blobs(
        self, registry: ListingRegistry, blob_store: _RecordingBlobStore
    ) -> None:
        kos = await _create(registry, cover_image="cover.jpg")
        await registry.update_listing(
            parse_update_request(kos.id, {"monthly_price": 1_000_000}), OWNER
        )
        assert blob_store.deleted == []

    async def test_invalid_payload_maps_to_validation_error(self) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            parse_update_request(1, {"monthly_price": -5})
        assert exc_info.value.http_status == 400
        assert exc_info.value.errors


# ===========================================================================
# Delete
# ===========================================================================


class TestDeleteListing:
    async def test_owner_delete_cascades_and_cleans_blobs(
        self,
        registry: ListingRegistry,
        conn: aiosqlite.Connection,
        blob_store: _RecordingBlobStore,
    ) -> None:
        kos = await _create(
            registry,
            cover_image="cover.jpg",
            cover_image_url="https://x/cover.jpg",
            images=["a.jpg", "b.jpg"],
            image_urls=["https://x/a.jpg", "https://x/b.jpg"],
            facilities=[{"facility_id": WIFI}],
        )
        await _add_review(conn, kos.id, "owner-2", 5)

        await registry.delete_listing(kos.id, OWNER)

        assert await registry.get_listing_details(kos.id, allow_inactive=True) is None
        assert await _count(conn, "kos_facilities") == 0
        assert await _count(conn, "reviews") == 0
        assert blob_store.deleted == [["cover.jpg", "a.jpg", "b.jpg"]]

    async def test_other_user_rejected(
        self, registry: ListingRegistry, blob_store: _RecordingBlobStore
    ) -> None:
        kos = await _create(registry, cover_image="cover.jpg")
        with pytest.raises(UnauthorizedError):
            await registry.delete_listing(kos.id, OTHER)
        assert await registry.get_listing_details(kos.id) is not None
        assert blob_store.deleted == []

    async def test_admin_may_delete_any(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        await registry.delete_listing(kos.id, ADMIN)
        assert await registry.get_listing_details(kos.id) is None

    async def test_admin_delete_missing_is_not_found(self, registry: ListingRegistry) -> None:
        with pytest.raises(ListingNotFoundError):
            await registry.delete_listing(999, ADMIN)

    async def test_blob_failure_does_not_fail_delete(
        self,
        conn: aiosqlite.Connection,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        failing = _RecordingBlobStore(fail=True)
        registry = ListingRegistry(conn, campus=CAMPUS, blob_store=failing)
        kos = await _create(registry, cover_image="cover.jpg")

        with caplog.at_level(logging.WARNING, logger="kosfinder.registry.listings"):
            await registry.delete_listing(kos.id, OWNER)

        assert failing.deleted == [["cover.jpg"]]
        assert await registry.get_listing_details(kos.id) is None
        assert any(
            getattr(r, "event", None) == events.BLOB_CLEANUP_FAILED for r in caplog.records
        )

    async def test_no_blob_store_skips_cleanup(self, conn: aiosqlite.Connection) -> None:
        registry = ListingRegistry(conn, campus=CAMPUS)
        kos = await _create(registry, cover_image="cover.jpg")
        await registry.delete_listing(kos.id, OWNER)
        assert await registry.get_listing_details(kos.id) is None


# ===========================================================================
# Status & images
# ===========================================================================


class TestStatusAndImages:
    async def test_set_active_missing_is_not_found(self, registry: ListingRegistry) -> None:
        with pytest.raises(ListingNotFoundError):
            await registry.set_listing_active(999, True)

    async def test_reactivate(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        await registry.set_listing_active(kos.id, False)
        await registry.set_listing_active(kos.id, True)
        assert [m.id for m in await registry.list_public_markers()] == [kos.id]

    async def test_update_images_cleans_dropped_refs(
        self, registry: ListingRegistry, blob_store: _RecordingBlobStore
    ) -> None:
        kos = await _create(
            registry,
            cover_image="old-cover.jpg",
            cover_image_url="https://x/old-cover.jpg",
            images=["keep.jpg", "drop.jpg"],
            image_urls=["https://x/keep.jpg", "https://x/drop.jpg"],
        )
        new_images = KosImages(
            cover_image="new-cover.jpg",
            cover_image_url="https://x/new-cover.jpg",
            images=["keep.jpg"],
            image_urls=["https://x/keep.jpg"],
        )
        await registry.update_listing_images(kos.id, new_images, OWNER)

        assert await registry.get_listing_images(kos.id, OWNER) == new_images
        assert blob_store.deleted == [["old-cover.jpg", "drop.jpg"]]

    async def test_get_images_requires_ownership(self, registry: ListingRegistry) -> None:
        kos = await _create(registry)
        with pytest.raises(UnauthorizedError):
            await registry.get_listing_images(kos.id, OTHER)
        assert await registry.get_listing_images(kos.id, ADMIN) == KosImages()


# ===========================================================================
# Payload parsing
# ===========================================================================


class TestParseCreateRequest:
    def test_missing_fields_listed(self) -> None:
        payload = _payload()
        del payload["title"]
        del payload["latitude"]
        with pytest.raises(ValidationFailedError) as exc_info:
            parse_create_request(payload)
        assert "title" in str(exc_info.value)
        assert "latitude" in str(exc_info.value)
        assert exc_info.value.http_status == 400

    def test_rooms_inconsistent(self) -> None:
        with pytest.raises(ValidationFailedError):
            parse_create_request(_payload(total_rooms=2, available_rooms=3))

    def test_gallery_lists_must_align(self) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            parse_create_request(
                _payload(images=["a.jpg", "b.jpg"], image_urls=["https://x/a.jpg"])
            )
        assert "same length" in str(exc_info.value.errors)


# ===========================================================================
# Caller resolution
# ===========================================================================


class TestResolveCaller:
    async def test_anonymous_is_none(self, conn: aiosqlite.Connection) -> None:
        assert await resolve_caller(None, UserRepository(conn)) is None

    async def test_new_user_created_as_user(self, conn: aiosqlite.Connection) -> None:
        profile = OAuthProfile(id="g-42", email="sari@example.com", name="Sari")
        caller = await resolve_caller(profile, UserRepository(conn))
        assert caller == Caller(id="g-42", role=UserRole.USER)

    async def test_configured_email_promoted(self, conn: aiosqlite.Connection) -> None:
        profile = OAuthProfile(id="owner-2", email="owner-2@example.com")
        users = UserRepository(conn)
        caller = await resolve_caller(
            profile, users, admin_emails=frozenset({"owner-2@example.com"})
        )
        assert caller is not None and caller.is_admin
        stored = await users.get_by_id("owner-2")
        assert stored is not None and stored.role == UserRole.ADMIN
