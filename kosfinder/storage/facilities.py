"""Facility type repository (amenity reference data, admin-managed)."""

from __future__ import annotations

import logging

import aiosqlite

from kosfinder.core.models import FacilityType
from kosfinder.storage.database import unit_of_work
from kosfinder.storage.repository import utc_now

__all__ = ["FacilityRepository"]

logger = logging.getLogger(__name__)


class FacilityRepository:
    """Data-access object for ``facility_types``.

    Args:
        conn: Open, configured :class:`aiosqlite.Connection`.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def list_all(self) -> list[FacilityType]:
        """All facility types ordered by name."""
        cursor = await self._conn.execute("SELECT * FROM facility_types ORDER BY name ASC")
        rows = await cursor.fetchall()
        return [FacilityType.model_validate(dict(row)) for row in rows]

    async def get(self, facility_id: int) -> FacilityType | None:
        cursor = await self._conn.execute(
            "SELECT * FROM facility_types WHERE id = ?",
            (facility_id,),
        )
        row = await cursor.fetchone()
        return FacilityType.model_validate(dict(row)) if row is not None else None

    async def create(self, name: str, icon: str | None = None) -> FacilityType:
        """Insert a facility type.

        Raises:
            aiosqlite.IntegrityError: If *name* already exists.
        """
        async with unit_of_work(self._conn, "create facility type"):
            cursor = await self._conn.execute(
                "INSERT INTO facility_types (name, icon, created_at) VALUES (?, ?, ?)",
                (name.strip(), icon, utc_now()),
            )
        facility = await self.get(cursor.lastrowid)
        assert facility is not None
        logger.info("Created facility type %d (%s)", facility.id, facility.name)
        return facility

    async def update(
        self,
        facility_id: int,
        *,
        name: str | None = None,
        icon: str | None = None,
    ) -> FacilityType | None:
        """Change name and/or icon; returns ``None`` if the id does not exist."""
        assignments: list[str] = []
        params: list[object] = []
        if name is not None:
            assignments.append("name = ?")
            params.append(name.strip())
        if icon is not None:
            assignments.append("icon = ?")
            params.append(icon)
        if assignments:
            async with unit_of_work(self._conn, "update facility type"):
                await self._conn.execute(
                    f"UPDATE facility_types SET {', '.join(assignments)} WHERE id = ?",
                    (*params, facility_id),
                )
        return await self.get(facility_id)

    async def delete(self, facility_id: int) -> bool:
        """Delete a facility type; its associations cascade away."""
        async with unit_of_work(self._conn, "delete facility type"):
            cursor = await self._conn.execute(
                "DELETE FROM facility_types WHERE id = ?",
                (facility_id,),
            )
        return cursor.rowcount > 0
