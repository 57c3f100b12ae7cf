from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: list[dict] = Field(default_factory=list)


class ErrorEnvelope(BaseModel):
    detail: ErrorResponse


LISTING_ERROR_RESPONSES = {
    403: {"model": ErrorEnvelope, "description": "Caller is neither owner nor admin"},
    404: {"model": ErrorEnvelope, "description": "No listing with that id or reference"},
    409: {"model": ErrorEnvelope, "description": "Invalid transition, failed precondition, or lost write race"},
    503: {"model": ErrorEnvelope, "description": "Listing store unavailable"},
}
