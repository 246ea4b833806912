import math
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from rentals_api.api.deps import get_rentals_component
from rentals_api.models import RentalStatus
from rentals_api.schemas.rental import (
    Envelope,
    PaginatedResponse,
    RentalListing,
    RentalListingCreation,
)
from rentals_api.services.rentals import RentalsComponent
from rentals_api.services.rentals.queries import get_pagination_params
from rentals_api.services.rentals.types import (
    FilterBy,
    GetRentalListingParameters,
    NFTCategory,
    SortBy,
    SortDirection,
)

router = APIRouter(tags=["rentals"])


def _lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else value


def listings_filter_by(
    status: Optional[list[RentalStatus]] = Query(None),
    target: Optional[str] = Query(None),
    updated_after: Optional[int] = Query(None, alias="updatedAfter"),
    token_id: Optional[str] = Query(None, alias="tokenId"),
    contract_addresses: Optional[list[str]] = Query(None, alias="contractAddresses"),
    network: Optional[str] = Query(None),
    lessor: Optional[str] = Query(None),
    tenant: Optional[str] = Query(None),
    nft_ids: Optional[list[str]] = Query(None, alias="nftIds"),
    category: Optional[NFTCategory] = Query(None),
    text: Optional[str] = Query(None),
    min_distance_to_plaza: Optional[int] = Query(None, alias="minDistanceToPlaza"),
    max_distance_to_plaza: Optional[int] = Query(None, alias="maxDistanceToPlaza"),
    min_estate_size: Optional[int] = Query(None, alias="minEstateSize"),
    max_estate_size: Optional[int] = Query(None, alias="maxEstateSize"),
    adjacent_to_road: Optional[bool] = Query(None, alias="adjacentToRoad"),
    rental_days: Optional[list[int]] = Query(None, alias="rentalDays"),
    min_price_per_day: Optional[str] = Query(None, alias="minPricePerDay", pattern=r"^[0-9]+$"),
    max_price_per_day: Optional[str] = Query(None, alias="maxPricePerDay", pattern=r"^[0-9]+$"),
) -> FilterBy:
    """Filters shared by the listings and the prices endpoints."""
    return FilterBy(
        status=[value.value for value in status] if status else None,
        target=_lower(target),
        updated_after=updated_after,
        token_id=token_id,
        contract_addresses=[address.lower() for address in contract_addresses]
        if contract_addresses
        else None,
        network=network,
        lessor=_lower(lessor),
        tenant=_lower(tenant),
        nft_ids=nft_ids,
        category=category,
        text=text,
        min_distance_to_plaza=min_distance_to_plaza,
        max_distance_to_plaza=max_distance_to_plaza,
        min_estate_size=min_estate_size,
        max_estate_size=max_estate_size,
        adjacent_to_road=adjacent_to_road,
        rental_days=rental_days,
        min_price_per_day=min_price_per_day,
        max_price_per_day=max_price_per_day,
    )


@router.post(
    "/rentals-listings",
    response_model=Envelope[RentalListing],
    response_model_by_alias=True,
    status_code=201,
)
async def create_rental_listing_endpoint(
    body: RentalListingCreation,
    x_identity_address: str = Header(..., alias="x-identity-address"),
    rentals: RentalsComponent = Depends(get_rentals_component),
):
    """
    Create a listing signed by the authenticated address.

    The address is set by the authentication layer in front of the service.
    """
    listing = await rentals.create_rental_listing(body.to_creation(), x_identity_address)
    return Envelope[RentalListing](data=RentalListing.model_validate(listing))


@router.get(
    "/rentals-listings",
    response_model=Envelope[PaginatedResponse[RentalListing]],
    response_model_by_alias=True,
)
async def get_rental_listings_endpoint(
    sort_by: Optional[SortBy] = Query(None, alias="sortBy"),
    sort_direction: Optional[SortDirection] = Query(None, alias="sortDirection"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    history: bool = Query(False),
    filter_by: FilterBy = Depends(listings_filter_by),
    rentals: RentalsComponent = Depends(get_rentals_component),
):
    parsed_limit, parsed_page = get_pagination_params(limit, page)
    results, total = await rentals.get_rental_listings(
        GetRentalListingParameters(
            sort_by=sort_by,
            sort_direction=sort_direction,
            page=parsed_page,
            limit=parsed_limit,
            filter_by=filter_by,
            history=history,
        )
    )
    return Envelope[PaginatedResponse[RentalListing]](
        data=PaginatedResponse[RentalListing](
            results=[RentalListing.model_validate(result) for result in results],
            total=total,
            page=parsed_page,
            pages=math.ceil(total / parsed_limit),
            limit=parsed_limit,
        )
    )


@router.patch(
    "/rentals-listings/{rental_id}",
    response_model=Envelope[RentalListing],
    response_model_by_alias=True,
)
async def refresh_rental_listing_endpoint(
    rental_id: str,
    rentals: RentalsComponent = Depends(get_rentals_component),
):
    """Bring a listing up to date with the indexers."""
    listing = await rentals.refresh_rental_listing(rental_id)
    return Envelope[RentalListing](data=RentalListing.model_validate(listing))


@router.get("/rental-listings/prices", response_model=Envelope[dict[str, int]])
async def get_rental_listings_prices_endpoint(
    filter_by: FilterBy = Depends(listings_filter_by),
    rentals: RentalsComponent = Depends(get_rentals_component),
):
    """Number of open listing periods for each price per day."""
    prices = await rentals.get_rental_listings_prices(filter_by)
    return Envelope[dict[str, int]](data=prices)
