from typing import Awaitable

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas.common import LISTING_ERROR_RESPONSES
from app.schemas.listing import (
    AvailabilityUpdate,
    ListingCreate,
    ListingOut,
    MarkSoldRequest,
    ReserveRequest,
)
from app.services.auth import Actor, get_actor, require_user
from app.services.errors import ListingError
from app.services.listing_store import ListingSnapshot
from app.services.listings import ListingLifecycleService, get_lifecycle_service
from app.services.reference_numbers import REFERENCE_PREFIX

router = APIRouter(responses=LISTING_ERROR_RESPONSES)


def _is_reference(key: str) -> bool:
    # listing ids are "lst_<hex>", reference numbers "REF-<ts>-<suffix>"
    return key.startswith(f"{REFERENCE_PREFIX}-")


def _out(listing: ListingSnapshot) -> ListingOut:
    return ListingOut.model_validate(listing, from_attributes=True)


async def _call(op: Awaitable[ListingSnapshot]) -> ListingOut:
    try:
        listing = await op
    except ListingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return _out(listing)


@router.post("/listings", response_model=ListingOut, status_code=status.HTTP_201_CREATED)
async def create_listing(
    payload: ListingCreate,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    """
    Anonymous callers may create listings; keep the returned reference
    number, it is the only way to manage the listing until it is linked.
    """
    return await _call(service.create(actor=actor, **payload.model_dump()))


@router.get("/listings/{key}", response_model=ListingOut)
async def get_listing(
    key: str,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    return await _call(service.get(key, actor=actor, by_reference=_is_reference(key)))


@router.post("/listings/{key}/submit", response_model=ListingOut)
async def submit_listing(
    key: str,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    return await _call(service.submit_for_review(key, actor=actor, by_reference=_is_reference(key)))


@router.post("/listings/{key}/withdraw", response_model=ListingOut)
async def withdraw_listing(
    key: str,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    return await _call(service.withdraw_from_review(key, actor=actor, by_reference=_is_reference(key)))


@router.post("/listings/{key}/publish", response_model=ListingOut)
async def publish_listing(
    key: str,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    return await _call(service.publish(key, actor=actor, by_reference=_is_reference(key)))


@router.post("/listings/{key}/reserve", response_model=ListingOut)
async def reserve_listing(
    key: str,
    payload: ReserveRequest,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    return await _call(service.reserve(
        key,
        actor=actor,
        holder=payload.holder,
        duration_seconds=payload.duration_seconds,
        by_reference=_is_reference(key),
    ))


@router.post("/listings/{key}/release", response_model=ListingOut)
async def release_listing_reservation(
    key: str,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    return await _call(service.release_reservation(key, actor=actor, by_reference=_is_reference(key)))


@router.post("/listings/{key}/mark-sold", response_model=ListingOut)
async def mark_listing_sold(
    key: str,
    payload: MarkSoldRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    payload = payload or MarkSoldRequest()
    return await _call(service.mark_sold(
        key,
        actor=actor,
        sold_price=payload.sold_price,
        sold_to=payload.sold_to,
        by_reference=_is_reference(key),
    ))


@router.post("/listings/{key}/archive", response_model=ListingOut)
async def archive_listing(
    key: str,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    return await _call(service.archive(key, actor=actor, by_reference=_is_reference(key)))


@router.post("/listings/{key}/availability", response_model=ListingOut)
async def update_listing_availability(
    key: str,
    payload: AvailabilityUpdate,
    actor: Actor = Depends(get_actor),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    return await _call(service.set_availability(
        key, payload.availability, actor=actor, by_reference=_is_reference(key),
    ))


@router.post("/listings/{reference_number}/link", response_model=ListingOut)
async def link_listing_to_account(
    reference_number: str,
    actor: Actor = Depends(require_user),
    service: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingOut:
    if not _is_reference(reference_number):
        raise HTTPException(status_code=422, detail="A reference number is required to link a listing")
    return await _call(service.link_to_account(reference_number, actor=actor))
