"""KosFinder application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

The field name is the **lowercase** version of the env-var name (e.g.
``BLOB_API_TOKEN`` → ``blob_api_token``).

Typical usage::

    from kosfinder.core.settings import Settings

    settings = Settings()                  # loads from env + .env
    print(settings.campus)                 # (-7.2819, 112.7949)
    print(settings.blob_configured)        # True / False
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

__all__ = ["Settings"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Runtime configuration for the registry, the CLI and the blob store.

    Process environment wins over ``.env``, which wins over the defaults below.

    The blob store may be left unconfigured during development; listing
    deletes then skip image cleanup and :attr:`blob_configured` is ``False``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/kosfinder.db",
        description="Path to the SQLite database file.",
    )

    # ------------------------------------------------------------------
    # Campus
    # ------------------------------------------------------------------
    campus_latitude: float = Field(
        default=-7.2819,
        ge=-90.0,
        le=90.0,
        description="Latitude of the campus reference point (ITS Sukolilo).",
    )
    campus_longitude: float = Field(
        default=112.7949,
        ge=-180.0,
        le=180.0,
        description="Longitude of the campus reference point.",
    )

    # ------------------------------------------------------------------
    # Blob store
    # ------------------------------------------------------------------
    blob_api_url: str = Field(
        default="",
        description="Base URL of the blob storage REST API.",
    )
    blob_api_token: str = Field(
        default="",
        description="Bearer token for the blob storage API.",
    )
    blob_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts per blob API request (1 initial + retries).",
    )

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------
    admin_emails: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Emails promoted to ADMIN on sign-in (comma-separated in env).",
    )

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["text", "json"] = "text"

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("admin_emails", mode="before")
    @classmethod
    def _split_admin_emails(cls, v: str | list[str]) -> list[str]:
        """``ADMIN_EMAILS`` arrives as ``"a@x.id, b@x.id"``; lists pass through."""
        items = v.split(",") if isinstance(v, str) else v
        return [email.strip().lower() for email in items if email.strip()]

    @field_validator("blob_api_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("log_level", "log_format", mode="before")
    @classmethod
    def _normalise_case(cls, v: object, info: ValidationInfo) -> object:
        if not isinstance(v, str):
            return v
        return v.upper() if info.field_name == "log_level" else v.lower()

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def campus(self) -> tuple[float, float]:
        """Campus reference point as ``(latitude, longitude)``."""
        return (self.campus_latitude, self.campus_longitude)

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()

    @property
    def admin_email_set(self) -> frozenset[str]:
        return frozenset(self.admin_emails)

    @property
    def blob_configured(self) -> bool:
        """``True`` if both blob API URL and token are set."""
        return bool(self.blob_api_url and self.blob_api_token)
