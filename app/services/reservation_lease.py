from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # some drivers hand back naive datetimes for timestamptz columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ReservationLease:
    """
    A time-bounded hold on a listing.

    The lease never mutates itself. The lifecycle service writes it onto a
    listing and the sweeper clears it; both decide expiry with is_expired().
    """
    start: datetime
    deadline: datetime
    holder: str

    @classmethod
    def open(cls, *, holder: str, duration_seconds: int, now: datetime) -> "ReservationLease":
        if duration_seconds <= 0:
            raise ValueError("reservation duration must be positive")
        holder = (holder or "").strip()
        if not holder:
            raise ValueError("reservation holder is required")
        return cls(start=now, deadline=now + timedelta(seconds=duration_seconds), holder=holder)

    @classmethod
    def from_fields(
        cls,
        reserved_at: datetime | None,
        reserved_until: datetime | None,
        reserved_by: str | None,
    ) -> "ReservationLease | None":
        if reserved_at is None and reserved_until is None and reserved_by is None:
            return None
        if reserved_at is None or reserved_until is None or reserved_by is None:
            raise ValueError("partial reservation state")
        return cls(start=as_utc(reserved_at), deadline=as_utc(reserved_until), holder=reserved_by)

    def as_fields(self) -> dict[str, object]:
        return {
            "reserved_at": self.start,
            "reserved_until": self.deadline,
            "reserved_by": self.holder,
        }

    @property
    def duration(self) -> timedelta:
        return self.deadline - self.start


CLEARED_LEASE_FIELDS: dict[str, object] = {
    "reserved_at": None,
    "reserved_until": None,
    "reserved_by": None,
}


def is_expired(lease: ReservationLease, now: datetime) -> bool:
    return now > lease.deadline
