from datetime import datetime

from pydantic import BaseModel, Field


class ReservationExpiryOut(BaseModel):
    success: bool
    expired_count: int
    expired_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    timestamp: datetime
