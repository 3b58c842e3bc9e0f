"""SQLite database initialisation for KosFinder.

This module is responsible for:

* Opening (or creating) the SQLite file.
* Configuring low-level PRAGMA settings (WAL journal mode, foreign keys).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS``, safe to
  call on every startup because the statements are idempotent.
* Providing :func:`unit_of_work` and :func:`transaction`, the locked commit
  boundary every writer on a shared connection goes through. The registry uses
  the latter for multi-statement writes.

Consumers should call :func:`open_db` once at process startup and share the
returned connection with the repository layer.  The connection must be closed
explicitly (``await conn.close()``).

Typical usage::

    from kosfinder.storage.database import open_db

    async def main() -> None:
        conn = await open_db()          # creates file + schema if absent
        # ... pass conn to the repositories ...
        await conn.close()
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path

import aiosqlite

from kosfinder.core.exceptions import StorageError

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "storage_errors",
    "transaction",
    "unit_of_work",
    "write_lock",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("kosfinder.db")

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: ``users``: one row per OAuth account.  ``id`` is the OAuth subject.
_DDL_USERS = """\
CREATE TABLE IF NOT EXISTS users (
    id          TEXT     NOT NULL PRIMARY KEY,
    name        TEXT     NOT NULL DEFAULT '',
    email       TEXT     NOT NULL UNIQUE,
    image_url   TEXT,
    role        TEXT     NOT NULL DEFAULT 'USER' CHECK (role IN ('USER', 'ADMIN')),
    created_at  TEXT     NOT NULL,
    updated_at  TEXT     NOT NULL
)"""

#: ``facility_types``: amenity reference data (WiFi, AC, parking, …).
_DDL_FACILITY_TYPES = """\
CREATE TABLE IF NOT EXISTS facility_types (
    id          INTEGER  PRIMARY KEY AUTOINCREMENT,
    name        TEXT     NOT NULL UNIQUE,
    icon        TEXT,
    created_at  TEXT     NOT NULL
)"""

#: ``kos_listings``: the registry's primary table.
#:
#: Column notes
#: ------------
#: slug               UNIQUE: the constraint, not the probe loop, is what
#:                    guarantees uniqueness under concurrent creates.
#: monthly_price      Rupiah, integer.
#: distance_to_its_km Denormalised on write from latitude/longitude.
#: images/image_urls  JSON arrays of equal length (blob refs / public URLs).
#: is_active          0/1.  Inactive rows are hidden from public reads.
_DDL_KOS_LISTINGS = """\
CREATE TABLE IF NOT EXISTS kos_listings (
    id                  INTEGER  PRIMARY KEY AUTOINCREMENT,
    owner_id            TEXT     NOT NULL REFERENCES users (id),
    title               TEXT     NOT NULL,
    slug                TEXT     NOT NULL UNIQUE,
    description         TEXT,
    address             TEXT     NOT NULL,
    gender              TEXT     NOT NULL CHECK (gender IN ('PUTRA', 'PUTRI', 'CAMPUR')),
    monthly_price       INTEGER  NOT NULL CHECK (monthly_price > 0),
    latitude            REAL     NOT NULL,
    longitude           REAL     NOT NULL,
    distance_to_its_km  REAL,
    available_rooms     INTEGER  NOT NULL DEFAULT 0 CHECK (available_rooms >= 0),
    total_rooms         INTEGER  NOT NULL DEFAULT 1 CHECK (total_rooms >= 1),
    cover_image         TEXT,
    cover_image_url     TEXT,
    images              TEXT     NOT NULL DEFAULT '[]',
    image_urls          TEXT     NOT NULL DEFAULT '[]',
    is_active           INTEGER  NOT NULL DEFAULT 1,
    created_at          TEXT     NOT NULL,
    updated_at          TEXT     NOT NULL,
    CHECK (available_rooms <= total_rooms)
)"""

#: ``kos_facilities``: listing ↔ facility type association.  Rows vanish
#: with their listing through ``ON DELETE CASCADE``.
_DDL_KOS_FACILITIES = """\
CREATE TABLE IF NOT EXISTS kos_facilities (
    kos_id        INTEGER  NOT NULL REFERENCES kos_listings (id) ON DELETE CASCADE,
    facility_id   INTEGER  NOT NULL REFERENCES facility_types (id) ON DELETE CASCADE,
    is_available  INTEGER  NOT NULL DEFAULT 1,
    extra_price   INTEGER  NOT NULL DEFAULT 0 CHECK (extra_price >= 0),
    PRIMARY KEY (kos_id, facility_id)
)"""

#: ``reviews``: tenant ratings (1–5), cascaded with their listing.
_DDL_REVIEWS = """\
CREATE TABLE IF NOT EXISTS reviews (
    id          INTEGER  PRIMARY KEY AUTOINCREMENT,
    kos_id      INTEGER  NOT NULL REFERENCES kos_listings (id) ON DELETE CASCADE,
    user_id     TEXT     NOT NULL REFERENCES users (id),
    rating      INTEGER  NOT NULL CHECK (rating BETWEEN 1 AND 5),
    comment     TEXT,
    created_at  TEXT     NOT NULL,
    updated_at  TEXT     NOT NULL
)"""

_DDL_INDEXES = (
    "CREATE INDEX IF NOT EXISTS ix_kos_listings_owner ON kos_listings (owner_id)",
    "CREATE INDEX IF NOT EXISTS ix_kos_listings_map "
    "ON kos_listings (is_active, distance_to_its_km)",
    "CREATE INDEX IF NOT EXISTS ix_reviews_kos ON reviews (kos_id)",
)

_DDL_ALL = (
    _DDL_USERS,
    _DDL_FACILITY_TYPES,
    _DDL_KOS_LISTINGS,
    _DDL_KOS_FACILITIES,
    _DDL_REVIEWS,
    *_DDL_INDEXES,
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and configure it for production.

    Steps performed on every call:

    1. Create parent directories for the DB file if they do not exist.
    2. Open the ``aiosqlite`` connection.
    3. Set ``row_factory = aiosqlite.Row`` so columns can be accessed by name.
    4. Enable WAL journal mode and foreign-key enforcement.
    5. Call :func:`create_schema` to bootstrap tables (idempotent).

    Args:
        path: Filesystem path for the SQLite file.  Defaults to
            :data:`DEFAULT_DB_PATH`.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.  The caller is
        responsible for closing it.

    Raises:
        aiosqlite.OperationalError: If the database file cannot be opened or
            created (e.g. permission denied on the parent directory).
    """
    db_path = Path(path or DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    conn: aiosqlite.Connection = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn)
    await create_schema(conn)

    logger.info("SQLite database ready at %s (schema verified)", db_path)
    return conn

async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create all required tables and indexes if they do not already exist.

    Idempotent and non-destructive: existing data is untouched.

    Args:
        conn: An open :class:`aiosqlite.Connection`.
    """
    for ddl in _DDL_ALL:
        await conn.execute(ddl)
    await conn.commit()
    logger.debug("Schema bootstrap complete (%d statements)", len(_DDL_ALL))

@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Re-raise driver errors inside the block as :class:`StorageError`.

    Args:
        action: Short description used in the error message
            (e.g. ``"list kos markers"``).
    """
    try:
        yield
    except aiosqlite.Error as exc:
        logger.error("Storage failure during %s: %s", action, exc)
        raise StorageError(f"Failed to {action}") from exc


#: One write lock per open connection, dropped with the connection.
_WRITE_LOCKS: weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock] = (
    weakref.WeakKeyDictionary()
)


def write_lock(conn: aiosqlite.Connection) -> asyncio.Lock:
    """The lock serialising every write transaction on *conn*."""
    lock = _WRITE_LOCKS.get(conn)
    if lock is None:
        lock = _WRITE_LOCKS[conn] = asyncio.Lock()
    return lock


@asynccontextmanager
async def unit_of_work(conn: aiosqlite.Connection, action: str) -> AsyncIterator[None]:
    """Hold the connection's write lock around the enclosed statements.

    Commits on normal exit and rolls back on any exception, which propagates
    unchanged.  Every writer sharing *conn* must go through here: a commit
    issued outside the lock would also commit another writer's half-finished
    statements.

    Args:
        conn: An open :class:`aiosqlite.Connection`.
        action: Short description used in logs.
    """
    async with write_lock(conn):
        try:
            yield
            await conn.commit()
        except BaseException:
            await conn.rollback()
            logger.debug("Rolled back transaction for %s", action)
            raise

@asynccontextmanager
async def transaction(conn: aiosqlite.Connection, action: str) -> AsyncIterator[None]:
    """Run the enclosed statements as one :func:`unit_of_work`.

    Driver errors are re-raised as :class:`StorageError`; everything else
    (registry errors, :class:`SlugConflictError`, …) propagates unchanged.

    Args:
        conn: An open :class:`aiosqlite.Connection`.
        action: Short description used in logs and error messages.
    """
    with storage_errors(action):
        async with unit_of_work(conn, action):
            yield

# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------

async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Apply PRAGMA settings that must be set immediately after opening.

    * ``journal_mode=WAL``: concurrent readers alongside the single writer.
    * ``foreign_keys=ON``: SQLite disables FK enforcement by default; the
      delete cascade to ``kos_facilities`` and ``reviews`` depends on it.
    """
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.warning(
            "Requested WAL journal mode but SQLite reported: %r. "
            "This may happen for in-memory databases (':memory:').",
            mode,
        )
    else:
        logger.debug("SQLite journal_mode set to WAL")

    await conn.execute("PRAGMA foreign_keys=ON")
    logger.debug("SQLite foreign_keys enforcement enabled")
