"""User repository.

Single data-access object for the ``users`` table.  Unlike listing writes,
every user write is one statement; each still runs in its own
:func:`~kosfinder.storage.database.unit_of_work` so it never commits a
listing transaction that shares the connection.
"""

from __future__ import annotations

import logging

import aiosqlite

from kosfinder.core.models import User, UserRole
from kosfinder.storage.database import unit_of_work
from kosfinder.storage.repository import utc_now

__all__ = ["UserRepository"]

logger = logging.getLogger(__name__)


class UserRepository:
    """Data-access object for ``users``.

    Args:
        conn: Open, configured :class:`aiosqlite.Connection`.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get_by_id(self, user_id: str) -> User | None:
        cursor = await self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        return User.model_validate(dict(row)) if row is not None else None

    async def get_by_email(self, email: str) -> User | None:
        cursor = await self._conn.execute("SELECT * FROM users WHERE email = ?", (email,))
        row = await cursor.fetchone()
        return User.model_validate(dict(row)) if row is not None else None

    async def list_all(self) -> list[User]:
        """Every user, newest first."""
        cursor = await self._conn.execute(
            "SELECT * FROM users ORDER BY created_at DESC, id DESC"
        )
        rows = await cursor.fetchall()
        return [User.model_validate(dict(row)) for row in rows]

    async def find_or_create(
        self,
        *,
        user_id: str,
        email: str,
        name: str | None = None,
        image_url: str | None = None,
    ) -> User:
        """Return the user for *email*, creating it on first sign-in.

        An existing row keyed by email keeps its id and role; its name and
        image are refreshed from the profile when the profile carries them.
        New users start with :attr:`UserRole.USER`.
        """
        existing = await self.get_by_email(email)
        now = utc_now()

        if existing is not None:
            async with unit_of_work(self._conn, "refresh user"):
                await self._conn.execute(
                    "UPDATE users SET name = ?, image_url = ?, updated_at = ? WHERE id = ?",
                    (
                        name or existing.name,
                        image_url or existing.image_url,
                        now,
                        existing.id,
                    ),
                )
            refreshed = await self.get_by_id(existing.id)
            assert refreshed is not None
            return refreshed

        async with unit_of_work(self._conn, "create user"):
            await self._conn.execute(
                """
                INSERT INTO users (id, name, email, image_url, role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, name or "", email, image_url or None, str(UserRole.USER), now, now),
            )
        logger.info("Created user %s (%s)", user_id, email)
        created = await self.get_by_id(user_id)
        assert created is not None
        return created

    async def update_role(self, user_id: str, role: UserRole) -> User:
        """Set the role of *user_id* and return the updated user.

        Raises:
            LookupError: If no such user exists.
        """
        async with unit_of_work(self._conn, "update user role"):
            cursor = await self._conn.execute(
                "UPDATE users SET role = ?, updated_at = ? WHERE id = ?",
                (str(role), utc_now(), user_id),
            )
        if cursor.rowcount == 0:
            raise LookupError(f"User not found: {user_id!r}")
        user = await self.get_by_id(user_id)
        assert user is not None
        return user
