from datetime import datetime, timedelta, timezone

import pytest

from app.services.reservation_lease import ReservationLease, as_utc, is_expired

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_open_computes_deadline():
    lease = ReservationLease.open(holder=" buyer-1 ", duration_seconds=1800, now=NOW)
    assert lease.start == NOW
    assert lease.deadline == NOW + timedelta(minutes=30)
    assert lease.holder == "buyer-1"
    assert lease.duration == timedelta(minutes=30)


@pytest.mark.parametrize("duration", [0, -5])
def test_open_rejects_non_positive_duration(duration):
    with pytest.raises(ValueError):
        ReservationLease.open(holder="buyer-1", duration_seconds=duration, now=NOW)


def test_open_requires_holder():
    with pytest.raises(ValueError):
        ReservationLease.open(holder="   ", duration_seconds=60, now=NOW)


def test_expiry_is_strictly_after_deadline():
    lease = ReservationLease.open(holder="buyer-1", duration_seconds=60, now=NOW)
    assert not is_expired(lease, NOW)
    assert not is_expired(lease, lease.deadline)
    assert is_expired(lease, lease.deadline + timedelta(microseconds=1))


def test_from_fields_all_or_nothing():
    assert ReservationLease.from_fields(None, None, None) is None

    lease = ReservationLease.from_fields(NOW, NOW + timedelta(hours=1), "buyer-1")
    assert lease.as_fields() == {
        "reserved_at": NOW,
        "reserved_until": NOW + timedelta(hours=1),
        "reserved_by": "buyer-1",
    }

    with pytest.raises(ValueError):
        ReservationLease.from_fields(NOW, None, "buyer-1")


def test_naive_datetimes_are_read_as_utc():
    naive = datetime(2026, 1, 15, 12, 0)
    assert as_utc(naive) == NOW
    assert as_utc(None) is None
    assert ReservationLease.from_fields(naive, naive, "x").deadline.tzinfo is not None
