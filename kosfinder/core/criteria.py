"""KosFinder map-filter model.

Defines :class:`KosFilters`, the single data structure that describes *which
kos a visitor wants to see on the map*.  Every filter is optional; supplied
filters are AND-combined and omitted ones impose no constraint.

Filters arrive as query-string parameters, so :meth:`KosFilters.from_query`
mirrors the web boundary's parsing (blank strings mean "not supplied",
``available_only`` is true only for the literal ``"true"``).

Typical usage::

    from kosfinder.core.criteria import KosFilters

    filters = KosFilters(gender="PUTRI", max_price=1_000_000, available_only=True)
    where, params = filters.to_sql()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, model_validator

from kosfinder.core.models import Gender

__all__ = ["KosFilters"]

logger = logging.getLogger(__name__)


class KosFilters(BaseModel):
    """Visitor-selected map filters.

    All bounds are *inclusive*.  ``None`` means "no constraint on this axis."

    Attributes:
        gender: Exact gender category to show.
        min_price: Minimum monthly price in rupiah.
        max_price: Maximum monthly price in rupiah.
        max_distance: Maximum distance to campus in kilometres.
        available_only: When ``True`` only kos with at least one free room
            are shown.
    """

    model_config = {"frozen": True}

    gender: Gender | None = None
    min_price: int | None = Field(None, ge=0)
    max_price: int | None = Field(None, ge=0)
    max_distance: float | None = Field(None, ge=0.0)
    available_only: bool = False

    @model_validator(mode="after")
    def _validate_price_range(self) -> KosFilters:
        """Ensure min ≤ max when both price bounds are set."""
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError(
                f"min_price ({self.min_price}) > max_price ({self.max_price})"
            )
        return self

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> KosFilters:
        """Build filters from raw query-string parameters.

        Raises:
            pydantic.ValidationError: If a value cannot be coerced (e.g.
                ``min_price=abc``) or the price range is inverted.
        """
        values: dict[str, Any] = {}
        for key in ("gender", "min_price", "max_price", "max_distance"):
            raw = params.get(key)
            if raw is not None and raw.strip():
                values[key] = raw.strip()
        values["available_only"] = params.get("available_only", "").strip().lower() == "true"
        return cls(**values)

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        """``True`` when no filter narrows the result."""
        return (
            self.gender is None
            and self.min_price is None
            and self.max_price is None
            and self.max_distance is None
            and not self.available_only
        )

    def to_sql(self) -> tuple[list[str], list[Any]]:
        """Translate the filters into ``WHERE`` fragments and bound parameters.

        The fragments reference ``kos_listings`` columns and use ``?``
        placeholders; the caller joins them with ``AND``.  The active-flag
        constraint is *not* included; public visibility is the repository's
        concern.

        Returns:
            ``(clauses, params)`` where ``params`` line up with the
            placeholders in ``clauses``.
        """
        clauses: list[str] = []
        params: list[Any] = []
        if self.gender is not None:
            clauses.append("gender = ?")
            params.append(str(self.gender))
        if self.min_price is not None:
            clauses.append("monthly_price >= ?")
            params.append(self.min_price)
        if self.max_price is not None:
            clauses.append("monthly_price <= ?")
            params.append(self.max_price)
        if self.max_distance is not None:
            clauses.append("distance_to_its_km <= ?")
            params.append(self.max_distance)
        if self.available_only:
            clauses.append("available_rooms > 0")
        return clauses, params
