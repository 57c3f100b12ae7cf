import secrets
from dataclasses import dataclass, replace
from typing import Iterable, Protocol

from fastapi import Depends, Header, HTTPException

from app.core.config import settings
from app.services.listing_state import Capabilities
from app.services.listing_store import ListingSnapshot


@dataclass(frozen=True)
class Actor:
    # set by the upstream session provider; None for anonymous callers
    user_id: str | None = None
    # reference number presented as an access key for unowned listings
    reference_number: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def presenting(self, reference_number: str) -> "Actor":
        return replace(self, reference_number=reference_number)


class CapabilityLookup(Protocol):
    def __call__(self, actor: Actor, listing: ListingSnapshot) -> Capabilities: ...


class RoleCapabilities:
    """
    Flat admin/user roles.

    Owner of an owned listing is its user; owner of an unowned listing is
    whoever presents its reference number.
    """

    def __init__(self, admin_user_ids: Iterable[str] = ()):
        self._admins = frozenset(admin_user_ids)

    def __call__(self, actor: Actor, listing: ListingSnapshot) -> Capabilities:
        is_admin = actor.user_id is not None and actor.user_id in self._admins
        if listing.user_id is not None:
            is_owner = actor.user_id == listing.user_id
        else:
            is_owner = actor.reference_number is not None and secrets.compare_digest(
                actor.reference_number, listing.reference_number
            )
        return Capabilities(is_owner=is_owner, is_admin=is_admin)


async def get_actor(x_user_id: str | None = Header(default=None)) -> Actor:
    user_id = (x_user_id or "").strip() or None
    return Actor(user_id=user_id)


def get_capabilities() -> CapabilityLookup:
    return RoleCapabilities(settings.admin_user_ids)


def require_user(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.is_anonymous:
        raise HTTPException(status_code=401, detail="Sign in required")
    return actor
