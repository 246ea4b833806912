"""
Conversions between indexer entities, ORM rows and the listing dicts
returned by the component.
"""

from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert

from rentals_api.models import Metadata, Period, Rental, RentalStatus
from rentals_api.services.rentals.types import NFT, IndexerRental


def metadata_values(nft: NFT) -> dict:
    return {
        "id": nft.id,
        "category": nft.category.value,
        "search_text": nft.search_text,
        "created_at": nft.created_at,
        "updated_at": nft.updated_at,
        "distance_to_plaza": nft.distance_to_plaza,
        "adjacent_to_road": nft.adjacent_to_road,
        "estate_size": nft.estate_size,
    }


def insert_metadata_if_missing(nft: NFT):
    """INSERT ... ON CONFLICT DO NOTHING for the asset's metadata row."""
    return (
        pg_insert(Metadata)
        .values(**metadata_values(nft))
        .on_conflict_do_nothing(index_elements=[Metadata.id])
    )


def apply_nft(metadata: Metadata, nft: NFT) -> None:
    for key, value in metadata_values(nft).items():
        if key != "id":
            setattr(metadata, key, value)


def find_chosen_period(periods: list[Period], indexer_rental: IndexerRental) -> Optional[Period]:
    """The period whose range covers the rented days at the price it was rented for."""
    price = Decimal(indexer_rental.price_per_day)
    for period in periods:
        if (
            period.min_days <= indexer_rental.rental_days <= period.max_days
            and Decimal(period.price_per_day) == price
        ):
            return period
    return None


def status_from_indexer(indexer_rental: IndexerRental) -> RentalStatus:
    return RentalStatus.CLAIMED if indexer_rental.owner_has_claimed_asset else RentalStatus.EXECUTED


def apply_indexer_rental(rental: Rental, indexer_rental: IndexerRental) -> None:
    """Move a local listing to the state the indexer reports for it."""
    rental.status = status_from_indexer(indexer_rental)
    rental.started_at = indexer_rental.started_at
    rental.updated_at = indexer_rental.updated_at
    rental.rented_days = indexer_rental.rental_days
    chosen = find_chosen_period(rental.periods, indexer_rental)
    if chosen is not None:
        rental.period_chosen = chosen.id
    if rental.listing is not None:
        rental.listing.tenant = indexer_rental.tenant


def _period_dict(min_days: Any, max_days: Any, price_per_day: Any) -> dict:
    return {
        "min_days": int(min_days),
        "max_days": int(max_days),
        "price_per_day": str(price_per_day),
    }


def serialize_rental(rental: Rental, metadata: Optional[Metadata]) -> dict:
    listing = rental.listing
    return {
        "id": str(rental.id),
        "category": metadata.category if metadata else None,
        "search_text": metadata.search_text if metadata else None,
        "network": rental.network,
        "chain_id": rental.chain_id,
        "expiration": rental.expiration,
        "signature": rental.signature,
        "nonces": list(rental.nonces),
        "token_id": rental.token_id,
        "contract_address": rental.contract_address,
        "rental_contract_address": rental.rental_contract_address,
        "lessor": listing.lessor if listing else None,
        "tenant": listing.tenant if listing else None,
        "status": RentalStatus(rental.status).value,
        "target": rental.target,
        "created_at": rental.created_at,
        "updated_at": rental.updated_at,
        "started_at": rental.started_at,
        "rented_days": rental.rented_days,
        "period_chosen": str(rental.period_chosen) if rental.period_chosen else None,
        "periods": [
            _period_dict(period.min_days, period.max_days, period.price_per_day)
            for period in rental.periods
        ],
    }


def row_to_listing(row: Mapping[str, Any]) -> dict:
    """Shape a row of the listings query like ``serialize_rental`` does."""
    return {
        "id": str(row["id"]),
        "category": row["category"],
        "search_text": row["search_text"],
        "network": row["network"],
        "chain_id": row["chain_id"],
        "expiration": row["expiration"],
        "signature": row["signature"],
        "nonces": list(row["nonces"]),
        "token_id": row["token_id"],
        "contract_address": row["contract_address"],
        "rental_contract_address": row["rental_contract_address"],
        "lessor": row["lessor"],
        "tenant": row["tenant"],
        "status": str(row["status"]),
        "target": row["target"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "started_at": row["started_at"],
        "rented_days": row["rented_days"],
        "period_chosen": str(row["period_chosen"]) if row["period_chosen"] else None,
        "periods": [_period_dict(*period) for period in row["periods"]],
    }
