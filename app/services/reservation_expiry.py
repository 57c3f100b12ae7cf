from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from fastapi import Depends
from opentelemetry import trace

from app.core.config import settings
from app.models.listing import ListingStatus
from app.services.audit import SWEEPER_ACTOR
from app.services.listing_state import Capabilities, plan_transition
from app.services.listing_store import ListingSnapshot, ListingStore, SqlListingStore, WriteOutcome, get_listing_store
from app.services.reservation_lease import is_expired, utcnow


log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# the sweeper acts with system rights; authorization is not its concern
SYSTEM_CAPABILITIES = Capabilities(is_admin=True)


class SweepState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass
class SweepResult:
    started_at: datetime
    finished_at: datetime | None = None
    expired_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    # lost the conditional write to another writer; counted as handled
    skipped_ids: list[str] = field(default_factory=list)

    @property
    def expired_count(self) -> int:
        return len(self.expired_ids)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def as_dict(self) -> dict:
        return {
            "expired_count": self.expired_count,
            "expired_ids": list(self.expired_ids),
            "errors": list(self.errors),
        }


class ReservationExpirySweeper:
    """
    Reverts RESERVED listings whose lease deadline has passed.

    Safe to run concurrently with itself and with user requests: each row is
    written with the same conditional update the lifecycle service uses
    (status still RESERVED and reserved_until still the lapsed value), so at
    most one writer wins per listing. A run can stop between any two rows;
    the next run re-selects whatever is still lapsed.
    """

    def __init__(
        self,
        store: ListingStore,
        *,
        batch_size: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._batch_size = batch_size or settings.reservation_sweep_batch_size
        self._clock = clock
        self.state = SweepState.IDLE

    async def expire_listing(self, listing: ListingSnapshot, now: datetime) -> WriteOutcome:
        lease = listing.lease
        if lease is None or not is_expired(lease, now):
            return WriteOutcome.STALE

        plan = plan_transition(
            listing,
            ListingStatus.PUBLISHED,
            SYSTEM_CAPABILITIES,
            allowed_from={ListingStatus.RESERVED},
        )
        return await self._store.conditional_update(
            listing.id,
            expected_status=ListingStatus.RESERVED,
            expected_reserved_until=listing.reserved_until,
            changes=plan.changes,
            actor_id=SWEEPER_ACTOR,
            action="listing.reservation_expired",
        )

    async def run(self, now: datetime | None = None) -> SweepResult:
        """
        One best-effort pass.

        Raises only when the candidate query cannot run at all; per-row
        failures land in result.errors.
        """
        now = now or self._clock()
        result = SweepResult(started_at=now)
        self.state = SweepState.RUNNING

        with tracer.start_as_current_span("reservation_expiry.sweep") as span:
            try:
                await self._sweep(now, result)
            finally:
                result.finished_at = self._clock()
                self.state = SweepState.COMPLETED
                span.set_attribute("reservation_expiry.expired_count", result.expired_count)
                span.set_attribute("reservation_expiry.error_count", len(result.errors))
                span.set_attribute("reservation_expiry.skipped_count", len(result.skipped_ids))

        log.info(
            "reservation expiry: expired=%d skipped=%d errors=%d",
            result.expired_count, len(result.skipped_ids), len(result.errors),
        )
        return result

    async def _sweep(self, now: datetime, result: SweepResult) -> None:
        seen = 0
        candidates = self._store.find_lapsed_reservations(now, batch_size=self._batch_size)
        try:
            async for listing in candidates:
                seen += 1
                await self._expire_row(listing, now, result)
        except Exception as e:
            if seen == 0:
                log.exception("reservation expiry: candidate query failed")
                raise
            # later page failed; rows already handled stay handled
            msg = f"Error checking expired reservations: {type(e).__name__}: {e}"
            log.exception("%s", msg)
            result.errors.append(msg)

    async def _expire_row(self, listing: ListingSnapshot, now: datetime, result: SweepResult) -> None:
        try:
            outcome = await self.expire_listing(listing, now)
        except Exception as e:
            msg = f"Failed to expire reservation for listing {listing.id}: {type(e).__name__}: {e}"
            log.exception("%s", msg)
            result.errors.append(msg)
            return

        if outcome is WriteOutcome.STALE:
            log.info("reservation expiry: listing_id=%s already handled", listing.id)
            result.skipped_ids.append(listing.id)
            return

        result.expired_ids.append(listing.id)
        log.info(
            "reservation expired: listing_id=%s user_id=%s expired_at=%s processed_at=%s",
            listing.id, listing.user_id, listing.reserved_until.isoformat(), now.isoformat(),
        )


def get_sweeper(store: SqlListingStore = Depends(get_listing_store)) -> ReservationExpirySweeper:
    return ReservationExpirySweeper(store)
