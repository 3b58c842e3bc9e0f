"""Caller resolution and the listing authorization predicate.

Authentication itself (the Google OAuth dance) happens upstream; by the time
a request reaches KosFinder the boundary holds a verified
:class:`OAuthProfile` or nothing.  :func:`resolve_caller` turns that profile
into a :class:`~kosfinder.core.models.Caller` backed by a ``users`` row.

:func:`can_mutate` is the single authorization rule for every listing
mutation: the caller owns the listing, or the caller is an admin.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from kosfinder.core.models import Caller, UserRole

if TYPE_CHECKING:
    from kosfinder.storage.users import UserRepository

__all__ = ["OAuthProfile", "can_mutate", "resolve_caller"]

logger = logging.getLogger(__name__)


class OAuthProfile(BaseModel):
    """Identity claims handed over by the OAuth provider."""

    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    name: str | None = None
    image: str | None = None


def can_mutate(caller: Caller, owner_id: str | None) -> bool:
    """Return ``True`` if *caller* may change a listing owned by *owner_id*.

    ``owner_id`` is ``None`` when the listing does not exist; only an admin
    passes in that case (and then meets a not-found error downstream).
    """
    if caller.role == UserRole.ADMIN:
        return True
    return owner_id is not None and owner_id == caller.id


async def resolve_caller(
    profile: OAuthProfile | None,
    users: UserRepository,
    *,
    admin_emails: frozenset[str] = frozenset(),
) -> Caller | None:
    """Map an OAuth profile to a registry caller.

    Finds or creates the ``users`` row for the profile's email.  Addresses in
    *admin_emails* are promoted to :attr:`UserRole.ADMIN` on sign-in; roles
    are never demoted here.

    Args:
        profile: Verified OAuth claims, or ``None`` for an anonymous request.
        users: User data access.
        admin_emails: Lower-cased addresses that always hold the admin role.

    Returns:
        The caller, or ``None`` when the request is anonymous.
    """
    if profile is None:
        return None

    user = await users.find_or_create(
        user_id=profile.id,
        email=profile.email,
        name=profile.name,
        image_url=profile.image,
    )
    if user.role != UserRole.ADMIN and user.email.lower() in admin_emails:
        user = await users.update_role(user.id, UserRole.ADMIN)
        logger.info("Promoted %s to ADMIN (configured admin email)", user.email)

    return Caller(id=user.id, role=user.role)
