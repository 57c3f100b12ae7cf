from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, Field, StringConstraints

from app.models.listing import AvailabilityStatus, ListingStatus


class ListingCreate(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    manufacturer: str | None = Field(default=None, max_length=120)
    model: str | None = Field(default=None, max_length=120)
    year: int | None = Field(default=None, ge=1900, le=2100)
    condition: str | None = Field(default=None, max_length=60)
    serial_number: str | None = Field(default=None, max_length=120)
    asking_price: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class ReserveRequest(BaseModel):
    holder: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    duration_seconds: int = Field(gt=0)


class MarkSoldRequest(BaseModel):
    sold_price: Decimal | None = Field(default=None, ge=0)
    sold_to: str | None = Field(default=None, max_length=200)


class AvailabilityUpdate(BaseModel):
    availability: AvailabilityStatus


class ListingOut(BaseModel):
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
