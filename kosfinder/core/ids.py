"""Listing identifier strategy for KosFinder.

A listing has two identifiers:

* ``id``: the numeric primary key assigned by the store.
* ``slug``: a URL-safe, human-readable key derived once from the title at
  creation time and never regenerated (renaming a kos keeps its URL).

Public pages address listings by either form (``/kos/12`` or
``/kos/kos-putri-sakura``).  :func:`parse_listing_ref` turns the raw path
segment into a tagged :data:`ListingRef` so lookups dispatch on type rather
than on string inspection scattered through the code.

Slug contract
-------------
+---------------------------+-----------------------+
| Title                     | Base slug             |
+===========================+=======================+
| ``"Kos Putri Sakura!!"``  | ``"kos-putri-sakura"``|
+---------------------------+-----------------------+
| ``"  Wisma   ITS  "``     | ``"wisma-its"``       |
+---------------------------+-----------------------+
| ``"AB"``                  | ``"ab-kos"``          |
+---------------------------+-----------------------+
| ``"@@"``                  | ``"-kos"``            |
+---------------------------+-----------------------+

When the base slug is taken, candidates continue ``base-1``, ``base-2``, …
(see :func:`slug_candidates`).

Typical usage::

    from kosfinder.core.ids import ListingId, parse_listing_ref, slugify

    ref = parse_listing_ref("12")        # ListingId(value=12)
    ref = parse_listing_ref("kos-melati")  # ListingSlug(value="kos-melati")
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass

__all__ = [
    "MIN_SLUG_LENGTH",
    "SHORT_SLUG_SUFFIX",
    "slugify",
    "slug_candidates",
    "ListingId",
    "ListingSlug",
    "ListingRef",
    "parse_listing_ref",
]

logger = logging.getLogger(__name__)

#: Base slugs shorter than this get :data:`SHORT_SLUG_SUFFIX` appended.
MIN_SLUG_LENGTH: int = 3

#: Suffix that disambiguates titles normalising to (almost) nothing.
SHORT_SLUG_SUFFIX: str = "-kos"

_DISALLOWED_RE = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Slugs
# ---------------------------------------------------------------------------


def slugify(title: str) -> str:
    """Derive the base slug for *title*.

    Steps: lowercase, drop every character outside ``[a-z0-9\\s-]``, trim,
    collapse whitespace runs into one hyphen, strip hyphens at either end,
    then append :data:`SHORT_SLUG_SUFFIX` if the result is shorter than
    :data:`MIN_SLUG_LENGTH`.

    Args:
        title: Listing title as entered by the owner.

    Returns:
        The base slug (not yet checked for uniqueness).
    """
    slug = _DISALLOWED_RE.sub("", title.lower()).strip()
    slug = _WHITESPACE_RE.sub("-", slug).strip("-")
    if len(slug) < MIN_SLUG_LENGTH:
        slug = f"{slug}{SHORT_SLUG_SUFFIX}"
    return slug


def slug_candidates(base: str) -> Iterator[str]:
    """Yield ``base``, ``base-1``, ``base-2``, … without end.

    The caller stops iterating at the first candidate the store accepts.
    """
    yield base
    counter = 1
    while True:
        yield f"{base}-{counter}"
        counter += 1


# ---------------------------------------------------------------------------
# Id-or-slug references
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ListingId:
    """Reference to a listing by numeric primary key."""

    value: int


@dataclass(frozen=True, slots=True)
class ListingSlug:
    """Reference to a listing by slug."""

    value: str


ListingRef = ListingId | ListingSlug


def parse_listing_ref(raw: str | int) -> ListingRef:
    """Classify *raw* as an id or a slug.

    A value that parses as a base-10 integer is an id; anything else is a
    slug.  Integers pass straight through.

    Example::

        assert parse_listing_ref("42") == ListingId(42)
        assert parse_listing_ref("kos-42") == ListingSlug("kos-42")
    """
    if isinstance(raw, int):
        return ListingId(raw)
    text = raw.strip()
    try:
        return ListingId(int(text))
    except ValueError:
        return ListingSlug(text)
