import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Enum, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from app.core.ids import new_listing_id

from app.models.base import Base, AuditMixin


class ListingStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    PUBLISHED = "PUBLISHED"
    RESERVED = "RESERVED"
    SOLD = "SOLD"
    ARCHIVED = "ARCHIVED"


class AvailabilityStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"


# reservation fields are all set iff status is RESERVED
LEASE_CONSISTENCY_SQL = (
    "(status = 'RESERVED' AND reserved_at IS NOT NULL AND reserved_until IS NOT NULL AND reserved_by IS NOT NULL)"
    " OR "
    "(status <> 'RESERVED' AND reserved_at IS NULL AND reserved_until IS NULL AND reserved_by IS NULL)"
)


class Listing(AuditMixin, Base):
    __tablename__ = "listings"
    __table_args__ = (
        UniqueConstraint("reference_number", name="uq_listings_reference_number"),
        CheckConstraint(LEASE_CONSISTENCY_SQL, name="ck_listings_lease_consistency"),
        # sweep query: status = RESERVED AND reserved_until < now
        Index("ix_listings_status_reserved_until", "status", "reserved_until"),
        Index("ix_listings_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_listing_id)

    # Human-shareable access key; unique at the storage level, never regenerated
    reference_number: Mapped[str] = mapped_column(String(40), nullable=False)

    status: Mapped[ListingStatus] = mapped_column(
        Enum(ListingStatus, native_enum=False, length=30), nullable=False, default=ListingStatus.DRAFT
    )
    availability: Mapped[AvailabilityStatus] = mapped_column(
        Enum(AvailabilityStatus, native_enum=False, length=20), nullable=False, default=AvailabilityStatus.UNAVAILABLE
    )

    # Lease: all three set together, cleared together
    reserved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reserved_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reserved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Owner account; NULL for anonymous listings addressed by reference number only
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)

    # Equipment descriptors
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    manufacturer: Mapped[str | None] = mapped_column(String(120), nullable=True)
    model: Mapped[str | None] = mapped_column(String(120), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    condition: Mapped[str | None] = mapped_column(String(60), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(120), nullable=True)
    asking_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    # Sale record
    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sold_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    sold_to: Mapped[str | None] = mapped_column(String(200), nullable=True)
