"""
Entities returned by the indexers, and the inputs of the rentals component.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

from rentals_api.models.rental import ZERO_ADDRESS


class NFTCategory(str, enum.Enum):
    PARCEL = "parcel"
    ESTATE = "estate"


class SortBy(str, enum.Enum):
    RENTAL_LISTING_DATE = "rental_listing_date"
    LAND_CREATION_DATE = "land_creation_date"
    NAME = "name"
    MAX_RENTAL_PRICE = "max_rental_price"
    MIN_RENTAL_PRICE = "min_rental_price"


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


def from_seconds(value: Union[str, int]) -> datetime:
    """Convert an indexer timestamp (seconds since epoch) to a naive UTC datetime."""
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def from_milliseconds(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def from_milliseconds_to_seconds(value: int) -> int:
    return value // 1000


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ----------------------------------------------------------------------
# Indexer entities
# ----------------------------------------------------------------------


@dataclass
class NFT:
    id: str
    category: NFTCategory
    contract_address: str
    token_id: str
    owner_address: str
    search_text: str
    created_at: datetime
    updated_at: datetime
    distance_to_plaza: Optional[int] = None
    adjacent_to_road: bool = False
    estate_size: int = 0
    search_is_land: bool = True

    @property
    def is_dissolved_estate(self) -> bool:
        return self.category == NFTCategory.ESTATE and self.estate_size == 0

    @classmethod
    def from_graph(cls, data: dict) -> "NFT":
        distance = data.get("searchDistanceToPlaza")
        return cls(
            id=data["id"],
            category=NFTCategory(data["category"]),
            contract_address=data["contractAddress"],
            token_id=data["tokenId"],
            owner_address=data["owner"]["address"],
            search_text=data.get("searchText") or "",
            created_at=from_seconds(data["createdAt"]),
            updated_at=from_seconds(data["updatedAt"]),
            # The subgraph reports -1 for parcels whose distance is unknown
            distance_to_plaza=None if distance is None or int(distance) < 0 else int(distance),
            adjacent_to_road=bool(data.get("searchAdjacentToRoad")),
            estate_size=int(data.get("searchEstateSize") or 0),
            search_is_land=bool(data.get("searchIsLand", True)),
        )


@dataclass
class IndexerRental:
    id: str  # contractAddress:tokenId:timesItHasBeenRented
    contract_address: str
    rental_contract_address: str
    token_id: str
    lessor: str
    tenant: str
    operator: str
    rental_days: int
    started_at: datetime
    ends_at: datetime
    updated_at: datetime
    price_per_day: str
    sender: str
    owner_has_claimed_asset: bool
    is_extension: bool
    signature: str

    def is_active(self, now: datetime) -> bool:
        return not self.owner_has_claimed_asset and self.ends_at > now

    @classmethod
    def from_graph(cls, data: dict) -> "IndexerRental":
        return cls(
            id=data["id"],
            contract_address=data["contractAddress"],
            rental_contract_address=data["rentalContractAddress"],
            token_id=data["tokenId"],
            lessor=data["lessor"],
            tenant=data["tenant"],
            operator=data["operator"],
            rental_days=int(data["rentalDays"]),
            started_at=from_seconds(data["startedAt"]),
            ends_at=from_seconds(data["endsAt"]),
            updated_at=from_seconds(data["updatedAt"]),
            price_per_day=data["pricePerDay"],
            sender=data["sender"],
            owner_has_claimed_asset=bool(data["ownerHasClaimedAsset"]),
            is_extension=bool(data["isExtension"]),
            signature=data["signature"],
        )


# ----------------------------------------------------------------------
# Index (nonce) updates
#
# The Rentals contract keeps three counters used to invalidate signatures:
# one for the whole contract, one per signer and one per (signer, asset).
# ----------------------------------------------------------------------


class AssetIndexAction(str, enum.Enum):
    RENT = "RENT"
    CANCEL = "CANCEL"


@dataclass
class ContractIndexUpdate:
    new_index: int
    date: datetime


@dataclass
class SignerIndexUpdate:
    signer: str
    new_index: int
    date: datetime


@dataclass
class AssetIndexUpdate:
    signer: str
    contract_address: str
    token_id: str
    new_index: int
    action: AssetIndexAction
    date: datetime


IndexUpdate = Union[ContractIndexUpdate, SignerIndexUpdate, AssetIndexUpdate]


class UnknownIndexUpdate(ValueError):
    pass


def index_update_from_graph(data: dict) -> IndexUpdate:
    date = from_seconds(data["date"])
    kind = data["type"]
    if kind == "CONTRACT":
        return ContractIndexUpdate(
            new_index=int(data["contractUpdate"]["newIndex"]), date=date
        )
    if kind == "SIGNER":
        update = data["signerUpdate"]
        return SignerIndexUpdate(
            signer=update["signer"], new_index=int(update["newIndex"]), date=date
        )
    if kind == "ASSET":
        update = data["assetUpdate"]
        return AssetIndexUpdate(
            signer=update["signer"],
            contract_address=update["contractAddress"],
            token_id=update["tokenId"],
            new_index=int(update["newIndex"]),
            action=AssetIndexAction(update["type"]),
            date=date,
        )
    raise UnknownIndexUpdate(f"Unknown index update type {kind!r} ({data.get('id')})")


# ----------------------------------------------------------------------
# Component inputs
# ----------------------------------------------------------------------


@dataclass
class PeriodCreation:
    min_days: int
    max_days: int
    price_per_day: str


@dataclass
class RentalListingCreation:
    network: str
    chain_id: int
    expiration: int  # milliseconds since epoch
    signature: str
    token_id: str
    contract_address: str
    rental_contract_address: str
    nonces: list[str]
    periods: list[PeriodCreation]
    target: str = ZERO_ADDRESS


@dataclass
class FilterBy:
    """Every supported listing filter.  None means "don't filter"."""

    status: Optional[list[str]] = None
    target: Optional[str] = None
    updated_after: Optional[int] = None  # milliseconds since epoch
    token_id: Optional[str] = None
    contract_addresses: Optional[list[str]] = None
    network: Optional[str] = None
    lessor: Optional[str] = None
    tenant: Optional[str] = None
    nft_ids: Optional[list[str]] = None
    category: Optional[NFTCategory] = None
    text: Optional[str] = None
    min_distance_to_plaza: Optional[int] = None
    max_distance_to_plaza: Optional[int] = None
    min_estate_size: Optional[int] = None
    max_estate_size: Optional[int] = None
    adjacent_to_road: Optional[bool] = None
    rental_days: Optional[list[int]] = None
    min_price_per_day: Optional[str] = None
    max_price_per_day: Optional[str] = None


@dataclass
class GetRentalListingParameters:
    sort_by: Optional[SortBy] = None
    sort_direction: Optional[SortDirection] = None
    page: int = 0
    limit: int = 50
    filter_by: FilterBy = field(default_factory=FilterBy)
    history: bool = False
