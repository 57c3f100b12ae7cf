from __future__ import annotations

import enum
from contextlib import asynccontextmanager
from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Protocol

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.db import SessionLocal
from app.models.listing import AvailabilityStatus, Listing, ListingStatus
from app.services.audit import ANONYMOUS_ACTOR, audit
from app.services.errors import Conflict, NotFound, StoreUnavailable
from app.services.reservation_lease import ReservationLease, as_utc

# columns only the lifecycle service and sweeper may write
LIFECYCLE_COLUMNS = frozenset({
    "status", "availability", "reserved_at", "reserved_until", "reserved_by",
    "sold_at", "sold_price", "sold_to",
})


class WriteOutcome(str, enum.Enum):
    APPLIED = "applied"
    STALE = "stale"


@dataclass(frozen=True)
class ListingSnapshot:
    """Detached, read-only view of one listings row as observed by a single read."""
    id: str
    reference_number: str
    status: ListingStatus
    availability: AvailabilityStatus
    reserved_at: datetime | None
    reserved_until: datetime | None
    reserved_by: str | None
    user_id: str | None
    title: str | None
    manufacturer: str | None
    model: str | None
    year: int | None
    condition: str | None
    serial_number: str | None
    asking_price: Decimal | None
    currency: str | None
    sold_at: datetime | None
    sold_price: Decimal | None
    sold_to: str | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: Listing) -> "ListingSnapshot":
        values: dict[str, Any] = {}
        for f in fields(cls):
            value = getattr(row, f.name)
            if isinstance(value, datetime):
                value = as_utc(value)
            values[f.name] = value
        return cls(**values)

    @property
    def lease(self) -> ReservationLease | None:
        return ReservationLease.from_fields(self.reserved_at, self.reserved_until, self.reserved_by)

    @property
    def is_reserved(self) -> bool:
        return self.status == ListingStatus.RESERVED


class ListingStore(Protocol):
    async def get(self, listing_id: str) -> ListingSnapshot: ...

    async def get_by_reference(self, reference_number: str) -> ListingSnapshot: ...

    async def reference_exists(self, reference_number: str) -> bool: ...

    def find_lapsed_reservations(self, now: datetime, *, batch_size: int = 200) -> AsyncIterator[ListingSnapshot]: ...

    async def conditional_update(
        self,
        listing_id: str,
        *,
        expected_status: ListingStatus,
        expected_reserved_until: datetime | None,
        changes: dict[str, Any],
        actor_id: str | None,
        action: str,
    ) -> WriteOutcome: ...

    async def claim_owner(self, listing_id: str, *, user_id: str) -> WriteOutcome: ...

    async def insert(self, listing: Listing) -> ListingSnapshot: ...


class SqlListingStore:
    """
    ListingStore over SQLAlchemy async sessions.

    Every call uses its own short-lived session and commits before returning,
    so one failing call never poisons another (the sweeper relies on this).
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as db:
                yield db
        except IntegrityError as e:
            raise Conflict("Constraint violation", details=[{"type": "integrity_error", "message": str(e.orig)}]) from e
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Listing store unavailable: {type(e).__name__}") from e

    async def get(self, listing_id: str) -> ListingSnapshot:
        async with self._session() as db:
            row = (await db.execute(select(Listing).where(Listing.id == listing_id))).scalar_one_or_none()
            if row is None:
                raise NotFound("Listing not found")
            return ListingSnapshot.from_row(row)

    async def get_by_reference(self, reference_number: str) -> ListingSnapshot:
        async with self._session() as db:
            row = (await db.execute(
                select(Listing).where(Listing.reference_number == reference_number)
            )).scalar_one_or_none()
            if row is None:
                raise NotFound("Listing not found with the provided reference number")
            return ListingSnapshot.from_row(row)

    async def reference_exists(self, reference_number: str) -> bool:
        async with self._session() as db:
            found = (await db.execute(
                select(Listing.id).where(Listing.reference_number == reference_number)
            )).scalar_one_or_none()
            return found is not None

    async def find_lapsed_reservations(
        self, now: datetime, *, batch_size: int = 200
    ) -> AsyncIterator[ListingSnapshot]:
        """
        Yield RESERVED listings whose deadline is before `now`, batch by batch.

        Keyset pagination on (reserved_until, id): rows expired by this run
        drop out of the set, rows that failed are stepped over, so nothing is
        visited twice and memory stays bounded by batch_size.
        """
        cursor: tuple[datetime, str] | None = None
        while True:
            stmt = (
                select(Listing)
                .where(
                    Listing.status == ListingStatus.RESERVED,
                    Listing.reserved_until.is_not(None),
                    Listing.reserved_until < now,
                )
                .order_by(Listing.reserved_until.asc(), Listing.id.asc())
                .limit(batch_size)
            )
            if cursor is not None:
                last_until, last_id = cursor
                stmt = stmt.where(
                    or_(
                        Listing.reserved_until > last_until,
                        and_(Listing.reserved_until == last_until, Listing.id > last_id),
                    )
                )

            async with self._session() as db:
                rows = (await db.execute(stmt)).scalars().all()
                batch = [ListingSnapshot.from_row(r) for r in rows]

            for snapshot in batch:
                yield snapshot

            if len(batch) < batch_size:
                return
            cursor = (batch[-1].reserved_until, batch[-1].id)

    async def conditional_update(
        self,
        listing_id: str,
        *,
        expected_status: ListingStatus,
        expected_reserved_until: datetime | None,
        changes: dict[str, Any],
        actor_id: str | None,
        action: str,
    ) -> WriteOutcome:
        unknown = set(changes) - LIFECYCLE_COLUMNS
        if unknown:
            raise ValueError(f"not a lifecycle column: {sorted(unknown)}")

        if expected_reserved_until is None:
            lease_guard = Listing.reserved_until.is_(None)
        else:
            lease_guard = Listing.reserved_until == expected_reserved_until

        async with self._session() as db:
            result = await db.execute(
                update(Listing)
                .where(
                    Listing.id == listing_id,
                    Listing.status == expected_status,
                    lease_guard,
                )
                .values(**changes, updated_by=actor_id or ANONYMOUS_ACTOR)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # status or lease moved since we read it
                await db.rollback()
                return WriteOutcome.STALE

            new_status = changes.get("status", expected_status)
            await audit(
                db,
                actor_id=actor_id,
                action=action,
                target_type="listing",
                target_id=listing_id,
                detail={
                    "from_status": expected_status.value,
                    "to_status": ListingStatus(new_status).value,
                },
            )
            await db.commit()
            return WriteOutcome.APPLIED

    async def claim_owner(self, listing_id: str, *, user_id: str) -> WriteOutcome:
        async with self._session() as db:
            result = await db.execute(
                update(Listing)
                .where(Listing.id == listing_id, Listing.user_id.is_(None))
                .values(user_id=user_id, updated_by=user_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                return WriteOutcome.STALE

            await audit(db, actor_id=user_id, action="listing.linked", target_type="listing", target_id=listing_id)
            await db.commit()
            return WriteOutcome.APPLIED

    async def insert(self, listing: Listing) -> ListingSnapshot:
        async with self._session() as db:
            db.add(listing)
            await db.flush()
            await audit(
                db,
                actor_id=listing.created_by,
                action="listing.created",
                target_type="listing",
                target_id=listing.id,
                detail={"reference_number": listing.reference_number},
            )
            await db.commit()
            await db.refresh(listing)
            return ListingSnapshot.from_row(listing)


def get_listing_store() -> SqlListingStore:
    return SqlListingStore(SessionLocal)
