"""SQLite-backed repositories for listings, users and facility types."""

from kosfinder.storage.database import (
    DEFAULT_DB_PATH,
    create_schema,
    open_db,
    storage_errors,
    transaction,
)
from kosfinder.storage.facilities import FacilityRepository
from kosfinder.storage.repository import KosRepository
from kosfinder.storage.users import UserRepository

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "storage_errors",
    "transaction",
    "KosRepository",
    "UserRepository",
    "FacilityRepository",
]
