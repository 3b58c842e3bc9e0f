"""KosFinder core domain models.

This module defines the canonical :class:`KosListing` row model, its
projections (:class:`KosMarker`, :class:`KosListingDetails`), the request
payloads accepted by the registry, and the small reference types shared by
every layer (users, facility types, reviews).

Row models mirror the SQLite tables one-to-one so the storage layer can build
them straight from an ``aiosqlite.Row``.  Request models carry the input
validation rules; anything that reaches the registry through
:class:`CreateKosRequest` / :class:`UpdateKosRequest` is already well-formed.

Typical usage::

    from kosfinder.core.models import CreateKosRequest, Gender

    request = CreateKosRequest(
        title="Kos Putri Sakura",
        address="Jl. Keputih Tegal 12, Sukolilo",
        gender=Gender.PUTRI,
        monthly_price=950_000,
        latitude=-7.2891,
        longitude=112.7967,
        total_rooms=10,
        available_rooms=3,
    )
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = [
    "Gender",
    "UserRole",
    "User",
    "OwnerSummary",
    "Caller",
    "FacilityType",
    "FacilityInput",
    "FacilityDetail",
    "Review",
    "KosListing",
    "KosMarker",
    "KosListingDetails",
    "KosListingWithOwner",
    "KosImages",
    "CreateKosRequest",
    "UpdateKosRequest",
    "check_gallery_aligned",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Gender(StrEnum):
    """Occupant gender category of a kos.

    Values are the Indonesian labels used throughout the product and stored
    verbatim in the ``kos_listings.gender`` column.
    """

    PUTRA = "PUTRA"  # male only
    PUTRI = "PUTRI"  # female only
    CAMPUR = "CAMPUR"  # mixed


class UserRole(StrEnum):
    """Account role.  ``ADMIN`` bypasses listing ownership checks."""

    USER = "USER"
    ADMIN = "ADMIN"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(BaseModel):
    """A registered account, keyed by the OAuth subject id."""

    id: str = Field(..., min_length=1)
    name: str = ""
    email: str = Field(..., min_length=3)
    image_url: str | None = None
    role: UserRole = UserRole.USER
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OwnerSummary(BaseModel):
    """Owner fields joined onto listing detail and admin views."""

    id: str
    name: str = ""
    email: str = ""


class Caller(BaseModel):
    """The authenticated identity performing a registry operation.

    Produced by :func:`kosfinder.core.auth.resolve_caller`.  Frozen so it can
    be passed through a request without accidental mutation.
    """

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# ---------------------------------------------------------------------------
# Facilities & reviews
# ---------------------------------------------------------------------------


class FacilityType(BaseModel):
    """Reference data describing an amenity (e.g. ``"WiFi"``)."""

    id: int
    name: str
    icon: str | None = None
    created_at: datetime | None = None


class FacilityInput(BaseModel):
    """One facility entry in a create/update payload."""

    facility_id: int = Field(..., ge=1)
    extra_price: int = Field(default=0, ge=0)
    is_available: bool = True

    @field_validator("extra_price", mode="before")
    @classmethod
    def _none_extra_price_to_zero(cls, v: object) -> object:
        """An explicit ``null`` extra price means "no surcharge"."""
        return 0 if v is None else v


class FacilityDetail(BaseModel):
    """A facility type joined with a listing's association row."""

    id: int
    name: str
    icon: str | None = None
    extra_price: int = 0
    is_available: bool = True


class Review(BaseModel):
    """A tenant review, with the reviewer's display name joined in."""

    id: int
    kos_id: int
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = None
    reviewer_name: str | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Listing rows and projections
# ---------------------------------------------------------------------------


def check_gallery_aligned(images: Sequence[str], image_urls: Sequence[str]) -> None:
    """Raise ``ValueError`` unless every gallery reference has a matching URL."""
    if len(images) != len(image_urls):
        raise ValueError(
            f"images ({len(images)}) and image_urls "
            f"({len(image_urls)}) must have the same length"
        )


class KosListing(BaseModel):
    """A boarding-house record exactly as stored in ``kos_listings``.

    Attributes:
        id: Store-assigned numeric id.
        owner_id: User id of the owning account.
        slug: URL-safe unique identifier derived from the title at creation.
        monthly_price: Rent per month in rupiah (smallest currency unit).
        distance_to_its_km: Great-circle distance to the campus, computed on
            write from the coordinates.
        cover_image: Blob reference of the cover image.
        cover_image_url: Public URL of the cover image.
        images: Ordered blob references of the gallery.
        image_urls: Public URLs matching :attr:`images` position by position.
    """

    id: int
    owner_id: str
    title: str
    slug: str
    description: str | None = None
    address: str
    gender: Gender
    monthly_price: int
    latitude: float
    longitude: float
    distance_to_its_km: float | None = None
    available_rooms: int
    total_rooms: int
    cover_image: str | None = None
    cover_image_url: str | None = None
    images: list[str] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class KosMarker(BaseModel):
    """Lightweight projection used to draw map markers."""

    id: int
    title: str
    slug: str
    gender: Gender
    monthly_price: int
    latitude: float
    longitude: float
    distance_to_its_km: float | None = None
    available_rooms: int
    cover_image_url: str | None = None


class KosListingDetails(KosListing):
    """A listing enriched with owner, facilities, reviews and rating."""

    owner: OwnerSummary | None = None
    facilities: list[FacilityDetail] = Field(default_factory=list)
    reviews: list[Review] = Field(default_factory=list)
    average_rating: float = 0.0
    total_reviews: int = 0


class KosListingWithOwner(KosListing):
    """Admin view row: the listing plus its owner's name and email."""

    owner: OwnerSummary | None = None


class KosImages(BaseModel):
    """The image columns of a listing, read or written as one unit."""

    cover_image: str | None = None
    cover_image_url: str | None = None
    images: list[str] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _gallery_lists_aligned(self) -> KosImages:
        check_gallery_aligned(self.images, self.image_urls)
        return self

    def references(self) -> list[str]:
        """Every blob reference held by these columns, cover first."""
        refs = [self.cover_image] if self.cover_image else []
        return refs + [ref for ref in self.images if ref]


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


def _strip_or_none(v: object) -> object:
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class CreateKosRequest(BaseModel):
    """Payload for :meth:`~kosfinder.registry.ListingRegistry.create_listing`.

    Title, address, gender, monthly price and both coordinates are required.
    Room counts default to a single, occupied room.
    """

    model_config = {"extra": "ignore"}

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    address: str = Field(..., min_length=1)
    gender: Gender
    monthly_price: int = Field(..., gt=0)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    total_rooms: int = Field(default=1, ge=1)
    available_rooms: int = Field(default=0, ge=0)
    cover_image: str | None = None
    cover_image_url: str | None = None
    images: list[str] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    facilities: list[FacilityInput] | None = None

    @field_validator("title", "address", mode="before")
    @classmethod
    def _strip_required_text(cls, v: object) -> object:
        """Strip surrounding whitespace so a blank title fails ``min_length``."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("description", "cover_image", "cover_image_url", mode="before")
    @classmethod
    def _blank_to_none(cls, v: object) -> object:
        return _strip_or_none(v)

    @model_validator(mode="after")
    def _rooms_within_total(self) -> CreateKosRequest:
        """Ensure ``available_rooms <= total_rooms``."""
        if self.available_rooms > self.total_rooms:
            raise ValueError(
                f"available_rooms ({self.available_rooms}) "
                f"> total_rooms ({self.total_rooms})"
            )
        return self

    @model_validator(mode="after")
    def _gallery_lists_aligned(self) -> CreateKosRequest:
        check_gallery_aligned(self.images, self.image_urls)
        return self

    def listing_columns(self) -> dict[str, Any]:
        """Column values for the ``kos_listings`` insert (facilities excluded)."""
        return self.model_dump(exclude={"facilities"})


#: Columns that are NOT NULL in ``kos_listings`` and therefore may be omitted
#: from an update but never explicitly set to ``None``.
_NON_NULLABLE_UPDATE_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "address",
        "gender",
        "monthly_price",
        "latitude",
        "longitude",
        "total_rooms",
        "available_rooms",
        "images",
        "image_urls",
    }
)


class UpdateKosRequest(BaseModel):
    """Partial payload for :meth:`~kosfinder.registry.ListingRegistry.update_listing`.

    Only fields the caller actually sent are applied; see
    :meth:`changed_columns`.  ``facilities`` follows replace semantics: any
    list (including ``[]``) replaces the whole set, omission leaves it alone.
    """

    model_config = {"extra": "ignore"}

    id: int = Field(..., ge=1)
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    address: str | None = Field(default=None, min_length=1)
    gender: Gender | None = None
    monthly_price: int | None = Field(default=None, gt=0)
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)
    total_rooms: int | None = Field(default=None, ge=1)
    available_rooms: int | None = Field(default=None, ge=0)
    cover_image: str | None = None
    cover_image_url: str | None = None
    images: list[str] | None = None
    image_urls: list[str] | None = None
    facilities: list[FacilityInput] | None = None

    @field_validator("title", "address", mode="before")
    @classmethod
    def _strip_text(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip()
        return v

    @model_validator(mode="after")
    def _no_null_for_required_columns(self) -> UpdateKosRequest:
        nulled = sorted(
            name
            for name in self.model_fields_set & _NON_NULLABLE_UPDATE_FIELDS
            if getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"fields cannot be null: {', '.join(nulled)}")
        return self

    @model_validator(mode="after")
    def _rooms_within_total(self) -> UpdateKosRequest:
        if (
            self.available_rooms is not None
            and self.total_rooms is not None
            and self.available_rooms > self.total_rooms
        ):
            raise ValueError(
                f"available_rooms ({self.available_rooms}) "
                f"> total_rooms ({self.total_rooms})"
            )
        return self

    @model_validator(mode="after")
    def _gallery_lists_aligned(self) -> UpdateKosRequest:
        """Both lists sent together must line up; a lone one is checked on merge."""
        if self.images is not None and self.image_urls is not None:
            check_gallery_aligned(self.images, self.image_urls)
        return self

    @property
    def replaces_facilities(self) -> bool:
        """``True`` when the payload carries a facilities list (even empty)."""
        return "facilities" in self.model_fields_set and self.facilities is not None

    def changed_columns(self) -> dict[str, Any]:
        """Column values the caller supplied, excluding ``id`` and facilities."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name not in {"id", "facilities"}
        }
