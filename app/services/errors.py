from __future__ import annotations

from typing import Any


class ListingError(Exception):
    """
    Base for every lifecycle failure surfaced to callers.
    API layer maps status_code/code straight onto the HTTP response.
    """
    status_code: int = 400
    code: str = "listing_error"

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    @property
    def detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFound(ListingError):
    status_code = 404
    code = "not_found"


class InvalidTransition(ListingError):
    status_code = 409
    code = "invalid_transition"


class PreconditionFailed(ListingError):
    status_code = 409
    code = "precondition_failed"


class Forbidden(ListingError):
    status_code = 403
    code = "forbidden"


class Conflict(ListingError):
    # lost an optimistic-write race; safe to retry with a fresh read
    status_code = 409
    code = "conflict"


class StoreUnavailable(ListingError):
    status_code = 503
    code = "store_unavailable"
