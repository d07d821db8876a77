"""Listings API endpoints."""

from fastapi import APIRouter

from exclusive_listings.api.dependencies import ListingServiceDep, SummaryServiceDep
from exclusive_listings.api.errors import to_http_exception
from exclusive_listings.api.schemas import DeleteResponse, NextIdResponse
from exclusive_listings.models.pydantic_models import ListingCreate, ListingRead, ListingSummary
from exclusive_listings.services.errors import ExclusiveListingsError

router = APIRouter()


@router.post(
    "",
    response_model=ListingRead,
    status_code=201,
    responses={503: {"description": "No listing id could be allocated"}},
)
def create_listing(
    data: ListingCreate,
    service: ListingServiceDep,
) -> ListingRead:
    """Create an exclusive listing under a newly allocated id."""
    try:
        return service.create_listing(data)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e


@router.get("/next-id", response_model=NextIdResponse)
def peek_next_id(service: ListingServiceDep) -> NextIdResponse:
    """Preview the id the next created listing would get.

    Advisory only: a concurrent creation may take it first.
    """
    return NextIdResponse(next_id=service.peek_next_id())


@router.get("/{listing_id}", response_model=ListingRead)
def get_listing(
    listing_id: int,
    service: ListingServiceDep,
) -> ListingRead:
    """Get a single listing by ID.

    Raises:
        HTTPException: 404 if listing not found.
    """
    try:
        return service.get_listing(listing_id)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e


@router.get("/{listing_id}/summary", response_model=ListingSummary)
def get_listing_summary(
    listing_id: int,
    service: SummaryServiceDep,
) -> ListingSummary:
    """Get a listing's stored photo count and primary photo URL."""
    try:
        return service.get_summary(listing_id)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e


@router.delete("/{listing_id}", response_model=DeleteResponse)
def delete_listing(
    listing_id: int,
    service: ListingServiceDep,
) -> DeleteResponse:
    """Delete a listing and all of its photos.

    Raises:
        HTTPException: 404 if listing not found.
    """
    try:
        removed = service.delete_listing(listing_id)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e

    return DeleteResponse(
        success=True, message=f"Listing {listing_id} deleted ({removed} photos removed)"
    )
