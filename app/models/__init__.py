from app.models.base import Base  # noqa: F401

from app.models.listing import Listing, ListingStatus, AvailabilityStatus  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401
