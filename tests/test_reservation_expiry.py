from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models.audit_log import AuditLog
from app.models.listing import AvailabilityStatus, ListingStatus
from app.services.errors import Conflict, StoreUnavailable
from app.services.listing_store import WriteOutcome
from app.services.listings import ListingLifecycleService
from app.services.reservation_expiry import ReservationExpirySweeper, SweepState

from fixtures_seed import EQUIPMENT, seed_listing, seed_reserved


async def lapsed(sessions, clock, n, *, minutes_ago=5):
    out = []
    for i in range(n):
        until = clock() - timedelta(minutes=minutes_ago + i)
        out.append(await seed_reserved(sessions, reserved_at=until - timedelta(hours=1), reserved_until=until))
    return out


class FailingUpdates:
    def __init__(self, inner, failing_ids):
        self._inner = inner
        self._failing_ids = set(failing_ids)

    async def conditional_update(self, listing_id, **kwargs):
        if listing_id in self._failing_ids:
            raise StoreUnavailable("Listing store unavailable: OperationalError")
        return await self._inner.conditional_update(listing_id, **kwargs)

    def __getattr__(self, name):
        return getattr(self._inner, name)


class FailingQuery:
    def find_lapsed_reservations(self, now, *, batch_size=200):
        return self._rows()

    async def _rows(self):
        raise StoreUnavailable("Listing store unavailable: OperationalError")
        yield  # pragma: no cover


@pytest.mark.asyncio
async def test_expires_lapsed_reservations_only(sweeper, sessions, store, clock):
    expired = await lapsed(sessions, clock, 3)
    active = await seed_reserved(
        sessions, reserved_at=clock(), reserved_until=clock() + timedelta(hours=1),
    )
    untouched = await seed_listing(sessions)

    result = await sweeper.run()

    assert result.expired_count == 3
    assert sorted(result.expired_ids) == sorted(l.id for l in expired)
    assert result.errors == []
    assert sweeper.state == SweepState.COMPLETED

    for listing in expired:
        stored = await store.get(listing.id)
        assert stored.status == ListingStatus.PUBLISHED
        assert stored.availability == AvailabilityStatus.AVAILABLE
        assert stored.lease is None

    assert (await store.get(active.id)).status == ListingStatus.RESERVED
    assert (await store.get(untouched.id)).updated_at == untouched.updated_at


@pytest.mark.asyncio
async def test_deadline_equal_to_now_is_not_lapsed(sweeper, sessions, clock):
    await seed_reserved(sessions, reserved_at=clock() - timedelta(hours=1), reserved_until=clock())
    result = await sweeper.run()
    assert result.expired_count == 0


@pytest.mark.asyncio
async def test_second_run_finds_nothing(sweeper, sessions, clock):
    await lapsed(sessions, clock, 4)
    assert (await sweeper.run()).expired_count == 4
    assert (await sweeper.run()).expired_count == 0


@pytest.mark.asyncio
async def test_walks_every_batch(store, sessions, clock):
    await lapsed(sessions, clock, 7)
    sweeper = ReservationExpirySweeper(store, batch_size=3, clock=clock)
    result = await sweeper.run()
    assert result.expired_count == 7
    assert len(set(result.expired_ids)) == 7


@pytest.mark.asyncio
async def test_expiry_is_audited_as_sweeper(sweeper, sessions, clock):
    [listing] = await lapsed(sessions, clock, 1)
    await sweeper.run()

    async with sessions() as db:
        row = (await db.execute(
            select(AuditLog).where(AuditLog.target_id == listing.id)
        )).scalar_one()
    assert row.actor_id == "sweeper"
    assert row.action == "listing.reservation_expired"
    assert row.detail == {"from_status": "RESERVED", "to_status": "PUBLISHED"}


@pytest.mark.asyncio
async def test_overlapping_sweeps_expire_each_listing_once(store, sessions, clock):
    listings = await lapsed(sessions, clock, 3)
    first = ReservationExpirySweeper(store, clock=clock)
    second = ReservationExpirySweeper(store, clock=clock)

    # first sweeper has read its candidates, second finishes before it writes
    candidates = [l async for l in store.find_lapsed_reservations(clock())]
    assert len(candidates) == 3
    assert (await second.run()).expired_count == 3

    outcomes = [await first.expire_listing(l, clock()) for l in candidates]
    assert outcomes == [WriteOutcome.STALE] * 3

    async with sessions() as db:
        rows = (await db.execute(
            select(AuditLog).where(AuditLog.action == "listing.reservation_expired")
        )).scalars().all()
    assert sorted(r.target_id for r in rows) == sorted(l.id for l in listings)


@pytest.mark.asyncio
async def test_release_beats_sweeper(sweeper, service, store, owner, clock):
    listing = await service.create(actor=owner, **EQUIPMENT)
    await service.submit_for_review(listing.id, actor=owner)
    await service.publish(listing.id, actor=owner)
    await service.reserve(listing.id, actor=owner, holder="buyer-1", duration_seconds=1800)

    clock.advance(1801)
    observed = await store.get(listing.id)
    await service.release_reservation(listing.id, actor=owner)

    assert await sweeper.expire_listing(observed, clock()) is WriteOutcome.STALE
    stored = await store.get(listing.id)
    assert stored.status == ListingStatus.PUBLISHED
    assert stored.lease is None


@pytest.mark.asyncio
async def test_sweeper_beats_release(sweeper, store, capabilities, clock, owner):
    plain = ListingLifecycleService(store, capabilities, clock=clock)
    listing = await plain.create(actor=owner, **EQUIPMENT)
    await plain.submit_for_review(listing.id, actor=owner)
    await plain.publish(listing.id, actor=owner)
    await plain.reserve(listing.id, actor=owner, holder="buyer-1", duration_seconds=1800)
    clock.advance(1801)

    class SweepAfterRead:
        def __init__(self):
            self.swept = False

        async def get(self, listing_id):
            snapshot = await store.get(listing_id)
            if not self.swept:
                self.swept = True
                self.result = await sweeper.run()
            return snapshot

        def __getattr__(self, name):
            return getattr(store, name)

    interleaved = SweepAfterRead()
    racing = ListingLifecycleService(interleaved, capabilities, clock=clock)
    with pytest.raises(Conflict):
        await racing.release_reservation(listing.id, actor=owner)

    assert interleaved.result.expired_ids == [listing.id]

    assert (await store.get(listing.id)).status == ListingStatus.PUBLISHED


@pytest.mark.asyncio
async def test_rereserved_listing_is_not_expired_from_stale_snapshot(sweeper, service, store, owner, clock):
    listing = await service.create(actor=owner, **EQUIPMENT)
    await service.submit_for_review(listing.id, actor=owner)
    await service.publish(listing.id, actor=owner)
    await service.reserve(listing.id, actor=owner, holder="buyer-1", duration_seconds=60)
    clock.advance(61)
    stale = await store.get(listing.id)

    await service.release_reservation(listing.id, actor=owner)
    await service.reserve(listing.id, actor=owner, holder="buyer-2", duration_seconds=3600)

    assert await sweeper.expire_listing(stale, clock()) is WriteOutcome.STALE
    assert (await store.get(listing.id)).reserved_by == "buyer-2"


@pytest.mark.asyncio
async def test_row_failure_does_not_stop_the_sweep(store, sessions, clock):
    listings = await lapsed(sessions, clock, 3)
    broken = listings[1].id
    sweeper = ReservationExpirySweeper(FailingUpdates(store, {broken}), batch_size=2, clock=clock)

    result = await sweeper.run()

    assert result.expired_count == 2
    assert broken not in result.expired_ids
    assert len(result.errors) == 1
    assert broken in result.errors[0]
    assert result.as_dict()["errors"] == result.errors
    assert (await store.get(broken)).status == ListingStatus.RESERVED

    # next run retries the failed row
    healed = ReservationExpirySweeper(store, clock=clock)
    assert (await healed.run()).expired_ids == [broken]


@pytest.mark.asyncio
async def test_query_failure_raises(clock):
    sweeper = ReservationExpirySweeper(FailingQuery(), clock=clock)
    with pytest.raises(StoreUnavailable):
        await sweeper.run()
    assert sweeper.state == SweepState.COMPLETED


@pytest.mark.asyncio
async def test_reservation_lapses_back_to_published(sweeper, service, store, owner, clock):
    listing = await service.create(actor=owner, **EQUIPMENT)
    await service.submit_for_review(listing.id, actor=owner)
    await service.publish(listing.id, actor=owner)

    held = await service.reserve(listing.id, actor=owner, holder="buyer1", duration_seconds=1800)
    assert held.status == ListingStatus.RESERVED
    assert held.reserved_until == clock() + timedelta(seconds=1800)

    # not yet lapsed
    assert (await sweeper.run()).expired_count == 0

    clock.advance(1801)
    result = await sweeper.run()
    assert result.expired_count == 1
    assert result.expired_ids == [listing.id]

    stored = await store.get(listing.id)
    assert stored.status == ListingStatus.PUBLISHED
    assert stored.availability == AvailabilityStatus.AVAILABLE
    assert (stored.reserved_at, stored.reserved_until, stored.reserved_by) == (None, None, None)
    assert stored.reference_number == listing.reference_number
