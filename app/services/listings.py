from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Collection

from fastapi import Depends

from app.core.config import settings
from app.models.listing import AvailabilityStatus, Listing, ListingStatus
from app.services.audit import ANONYMOUS_ACTOR
from app.services.auth import Actor, CapabilityLookup, get_capabilities
from app.services.errors import Conflict, Forbidden, NotFound, PreconditionFailed
from app.services.listing_state import plan_transition
from app.services.listing_store import ListingSnapshot, ListingStore, SqlListingStore, WriteOutcome, get_listing_store
from app.services.reference_numbers import allocate_reference_number
from app.services.reservation_lease import ReservationLease, utcnow


log = logging.getLogger(__name__)


class ListingLifecycleService:
    """
    The only write surface for listing status, availability and lease fields.

    Each mutation is: one read, one pure validation, one conditional write
    guarded on the observed status and lease deadline. Nothing is retried
    here; a lost race surfaces as Conflict and the caller decides.

    `target` is a listing id, or a reference number when by_reference=True.
    Presenting a reference number grants owner rights on unowned listings.
    """

    def __init__(
        self,
        store: ListingStore,
        capabilities: CapabilityLookup,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_reservation_seconds: int | None = None,
    ):
        self._store = store
        self._capabilities = capabilities
        self._clock = clock
        self._max_reservation_seconds = max_reservation_seconds or settings.max_reservation_seconds

    async def _load(self, target: str, actor: Actor, by_reference: bool) -> tuple[ListingSnapshot, Actor]:
        if by_reference:
            listing = await self._store.get_by_reference(target)
            return listing, actor.presenting(target)
        return await self._store.get(target), actor

    async def _write(
        self,
        listing: ListingSnapshot,
        *,
        actor: Actor,
        changes: dict[str, Any],
        action: str,
    ) -> ListingSnapshot:
        outcome = await self._store.conditional_update(
            listing.id,
            expected_status=listing.status,
            expected_reserved_until=listing.reserved_until,
            changes=changes,
            actor_id=actor.user_id,
            action=action,
        )
        if outcome is WriteOutcome.STALE:
            raise Conflict("Listing was modified concurrently; reload and retry")

        log.info(
            "%s: listing_id=%s %s -> %s actor=%s",
            action, listing.id, listing.status.value,
            changes.get("status", listing.status).value, actor.user_id or ANONYMOUS_ACTOR,
        )
        # re-read so the caller sees the stored audit timestamps
        return await self._store.get(listing.id)

    async def _transition(
        self,
        target: str,
        requested: ListingStatus,
        *,
        actor: Actor,
        by_reference: bool,
        action: str,
        allowed_from: Collection[ListingStatus] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ListingSnapshot:
        listing, actor = await self._load(target, actor, by_reference)
        plan = plan_transition(
            listing,
            requested,
            self._capabilities(actor, listing),
            allowed_from=allowed_from,
        )
        changes = {**plan.changes, **(extra or {})}
        return await self._write(listing, actor=actor, changes=changes, action=action)

    # -- creation ---------------------------------------------------------

    async def create(
        self,
        *,
        actor: Actor,
        title: str | None = None,
        manufacturer: str | None = None,
        model: str | None = None,
        year: int | None = None,
        condition: str | None = None,
        serial_number: str | None = None,
        asking_price: Decimal | None = None,
        currency: str | None = None,
    ) -> ListingSnapshot:
        reference_number = await allocate_reference_number(self._store.reference_exists, now=self._clock)
        created_by = actor.user_id or ANONYMOUS_ACTOR

        listing = await self._store.insert(
            Listing(
                reference_number=reference_number,
                status=ListingStatus.DRAFT,
                availability=AvailabilityStatus.UNAVAILABLE,
                user_id=actor.user_id,
                title=title,
                manufacturer=manufacturer,
                model=model,
                year=year,
                condition=condition,
                serial_number=serial_number,
                asking_price=asking_price,
                currency=currency.upper() if currency else None,
                created_by=created_by,
                updated_by=created_by,
            )
        )
        log.info("listing.created: listing_id=%s reference=%s actor=%s", listing.id, reference_number, created_by)
        return listing

    # -- reads ------------------------------------------------------------

    async def get(self, target: str, *, actor: Actor, by_reference: bool = False) -> ListingSnapshot:
        """Non-owners only see listings that are published and purchasable."""
        listing, actor = await self._load(target, actor, by_reference)
        if self._capabilities(actor, listing).may_mutate:
            return listing
        if listing.status == ListingStatus.PUBLISHED and listing.availability == AvailabilityStatus.AVAILABLE:
            return listing
        raise NotFound("Listing not found")

    # -- lifecycle --------------------------------------------------------

    async def submit_for_review(self, target: str, *, actor: Actor, by_reference: bool = False) -> ListingSnapshot:
        return await self._transition(
            target, ListingStatus.PENDING_REVIEW,
            actor=actor, by_reference=by_reference, action="listing.submitted",
        )

    async def withdraw_from_review(self, target: str, *, actor: Actor, by_reference: bool = False) -> ListingSnapshot:
        return await self._transition(
            target, ListingStatus.DRAFT,
            actor=actor, by_reference=by_reference, action="listing.withdrawn",
        )

    async def publish(self, target: str, *, actor: Actor, by_reference: bool = False) -> ListingSnapshot:
        return await self._transition(
            target, ListingStatus.PUBLISHED,
            actor=actor, by_reference=by_reference, action="listing.published",
            allowed_from={ListingStatus.PENDING_REVIEW},
        )

    async def reserve(
        self,
        target: str,
        *,
        actor: Actor,
        holder: str,
        duration_seconds: int,
        by_reference: bool = False,
    ) -> ListingSnapshot:
        """
        Put a time-bounded hold on a published, available listing.

        No timer is scheduled: once the deadline passes the expiry sweeper
        picks the listing up on its next run.
        """
        listing, actor = await self._load(target, actor, by_reference)
        try:
            lease = ReservationLease.open(holder=holder, duration_seconds=duration_seconds, now=self._clock())
        except ValueError:
            # the validator reports it after authorization and status checks
            lease = None
        plan = plan_transition(listing, ListingStatus.RESERVED, self._capabilities(actor, listing), lease=lease)
        if duration_seconds > self._max_reservation_seconds:
            raise PreconditionFailed(
                f"Reservation duration exceeds {self._max_reservation_seconds} seconds"
            )
        return await self._write(listing, actor=actor, changes=plan.changes, action="listing.reserved")

    async def release_reservation(self, target: str, *, actor: Actor, by_reference: bool = False) -> ListingSnapshot:
        return await self._transition(
            target, ListingStatus.PUBLISHED,
            actor=actor, by_reference=by_reference, action="listing.reservation_released",
            allowed_from={ListingStatus.RESERVED},
        )

    async def mark_sold(
        self,
        target: str,
        *,
        actor: Actor,
        sold_price: Decimal | None = None,
        sold_to: str | None = None,
        by_reference: bool = False,
    ) -> ListingSnapshot:
        return await self._transition(
            target, ListingStatus.SOLD,
            actor=actor, by_reference=by_reference, action="listing.sold",
            extra={"sold_at": self._clock(), "sold_price": sold_price, "sold_to": sold_to},
        )

    async def archive(self, target: str, *, actor: Actor, by_reference: bool = False) -> ListingSnapshot:
        return await self._transition(
            target, ListingStatus.ARCHIVED,
            actor=actor, by_reference=by_reference, action="listing.archived",
        )

    async def set_availability(
        self,
        target: str,
        availability: AvailabilityStatus,
        *,
        actor: Actor,
        by_reference: bool = False,
    ) -> ListingSnapshot:
        """Toggle purchasability of a published listing without touching its status."""
        listing, actor = await self._load(target, actor, by_reference)
        if not self._capabilities(actor, listing).may_mutate:
            raise Forbidden("You do not have permission to modify this listing")
        if listing.status != ListingStatus.PUBLISHED:
            raise PreconditionFailed(
                f"Availability can only change on PUBLISHED listings (is {listing.status.value})"
            )
        if listing.availability == availability:
            return listing
        return await self._write(
            listing, actor=actor, changes={"availability": availability}, action="listing.availability_changed",
        )

    # -- ownership --------------------------------------------------------

    async def link_to_account(self, reference_number: str, *, actor: Actor) -> ListingSnapshot:
        """Attach an anonymous listing to the caller's account."""
        if actor.is_anonymous:
            raise Forbidden("Sign in to link a listing to your account")

        listing = await self._store.get_by_reference(reference_number)
        if listing.user_id == actor.user_id:
            return listing
        if listing.user_id is not None:
            raise Forbidden("Listing is already linked to another account")

        outcome = await self._store.claim_owner(listing.id, user_id=actor.user_id)
        if outcome is WriteOutcome.STALE:
            raise Conflict("Listing was linked concurrently")

        log.info("listing.linked: listing_id=%s user_id=%s", listing.id, actor.user_id)
        return await self._store.get(listing.id)


def get_lifecycle_service(
    store: SqlListingStore = Depends(get_listing_store),
    capabilities: CapabilityLookup = Depends(get_capabilities),
) -> ListingLifecycleService:
    return ListingLifecycleService(store, capabilities)
