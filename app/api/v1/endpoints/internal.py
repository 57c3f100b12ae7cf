import logging

from fastapi import APIRouter, Depends, HTTPException

from app.schemas.reservation_expiry import ReservationExpiryOut
from app.services.cron_auth import require_cron_secret
from app.services.errors import StoreUnavailable
from app.services.reservation_expiry import ReservationExpirySweeper, get_sweeper
from app.services.reservation_lease import utcnow


log = logging.getLogger(__name__)
router = APIRouter()


@router.api_route(
    "/internal/cron/reservation-expiry",
    methods=["GET", "POST"],
    response_model=ReservationExpiryOut,
    dependencies=[Depends(require_cron_secret)],
)
async def run_reservation_expiry(sweeper: ReservationExpirySweeper = Depends(get_sweeper)) -> ReservationExpiryOut:
    """Called by the external scheduler on a fixed cadence; takes no input."""
    try:
        result = await sweeper.run()
    except StoreUnavailable as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    return ReservationExpiryOut(
        success=not result.has_errors,
        timestamp=utcnow(),
        **result.as_dict(),
    )
