from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Collection

from app.models.listing import AvailabilityStatus, ListingStatus
from app.services.errors import Forbidden, InvalidTransition, PreconditionFailed
from app.services.reservation_lease import CLEARED_LEASE_FIELDS, ReservationLease


ALLOWED_TRANSITIONS: dict[ListingStatus, frozenset[ListingStatus]] = {
    ListingStatus.DRAFT: frozenset({ListingStatus.PENDING_REVIEW, ListingStatus.ARCHIVED}),
    ListingStatus.PENDING_REVIEW: frozenset(
        {ListingStatus.PUBLISHED, ListingStatus.DRAFT, ListingStatus.ARCHIVED}
    ),
    ListingStatus.PUBLISHED: frozenset(
        {ListingStatus.RESERVED, ListingStatus.SOLD, ListingStatus.ARCHIVED}
    ),
    ListingStatus.RESERVED: frozenset(
        {ListingStatus.PUBLISHED, ListingStatus.SOLD, ListingStatus.ARCHIVED}
    ),
    # terminal
    ListingStatus.SOLD: frozenset(),
    ListingStatus.ARCHIVED: frozenset(),
}

# must be filled before a listing can go to review or be published
REQUIRED_FOR_REVIEW: tuple[str, ...] = (
    "manufacturer",
    "model",
    "year",
    "condition",
    "serial_number",
    "asking_price",
    "currency",
)


@dataclass(frozen=True)
class Capabilities:
    is_owner: bool = False
    is_admin: bool = False

    @property
    def may_mutate(self) -> bool:
        return self.is_owner or self.is_admin


@dataclass(frozen=True)
class TransitionPlan:
    from_status: ListingStatus
    to_status: ListingStatus
    changes: dict[str, Any] = field(default_factory=dict)


def is_terminal(status: ListingStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def can_transition(current: ListingStatus, requested: ListingStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def missing_required_fields(listing: Any) -> list[str]:
    missing = []
    for name in REQUIRED_FOR_REVIEW:
        value = getattr(listing, name, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def plan_transition(
    listing: Any,
    requested: ListingStatus,
    caps: Capabilities,
    *,
    lease: ReservationLease | None = None,
    allowed_from: Collection[ListingStatus] | None = None,
) -> TransitionPlan:
    """
    Decide whether `listing` may move to `requested` for an actor with `caps`.

    Pure: reads only its arguments. Returns the status plus field deltas to
    write, or raises Forbidden / PreconditionFailed / InvalidTransition.

    Order matters: authorization first, then the reserve precondition (so a
    second reserve is a precondition failure rather than a missing edge),
    then graph membership, then the per-operation source restriction and
    data requirements.
    """
    current: ListingStatus = listing.status

    if not caps.may_mutate:
        raise Forbidden("You do not have permission to modify this listing")

    if requested == ListingStatus.RESERVED:
        if current == ListingStatus.RESERVED:
            raise PreconditionFailed("Listing is already reserved")
        if current != ListingStatus.PUBLISHED:
            raise PreconditionFailed(f"Listing must be PUBLISHED to be reserved (is {current.value})")
        if listing.availability != AvailabilityStatus.AVAILABLE:
            raise PreconditionFailed("Listing must be available to be reserved")
        if lease is None:
            raise PreconditionFailed("A reservation needs a holder and a positive duration")

    if not can_transition(current, requested):
        raise InvalidTransition(f"Cannot transition from {current.value} to {requested.value}")

    if allowed_from is not None and current not in allowed_from:
        expected = ", ".join(sorted(s.value for s in allowed_from))
        raise PreconditionFailed(
            f"Operation requires status {expected} (is {current.value})"
        )

    if requested == ListingStatus.PENDING_REVIEW or (
        requested == ListingStatus.PUBLISHED and current == ListingStatus.PENDING_REVIEW
    ):
        missing = missing_required_fields(listing)
        if missing:
            raise PreconditionFailed(
                f"Missing required fields: {', '.join(missing)}",
                details=[{"type": "missing_field", "field": name} for name in missing],
            )

    return TransitionPlan(from_status=current, to_status=requested, changes=_deltas(requested, lease))


def _deltas(requested: ListingStatus, lease: ReservationLease | None) -> dict[str, Any]:
    changes: dict[str, Any] = {"status": requested}

    if requested == ListingStatus.RESERVED:
        # availability is orthogonal to the lease
        assert lease is not None
        changes.update(lease.as_fields())
        return changes

    changes.update(CLEARED_LEASE_FIELDS)
    if requested == ListingStatus.PUBLISHED:
        changes["availability"] = AvailabilityStatus.AVAILABLE
    elif requested in (ListingStatus.SOLD, ListingStatus.ARCHIVED):
        changes["availability"] = AvailabilityStatus.UNAVAILABLE
    return changes
