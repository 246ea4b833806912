"""Builders for the ORM rows, indexer entities and mocked collaborators used in tests."""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from rentals_api.models import Metadata, Period, Rental, RentalListing, RentalStatus
from rentals_api.services.rentals.types import NFT, IndexerRental, NFTCategory

NOW = datetime(2026, 1, 1, 12, 0, 0)

LESSOR = "0x9abdcb8825696cc2ef3a0a955f99850418847f5d"
TENANT = "0x1b6fa6a4e8b8b2d5c9e4ab8d3e2e0a7d1c1b9f00"
LAND = "0x25b6b4bac4adb582a0abd475439da6730777fbf7"
# Rentals contract registered for chain 5
ESCROW = "0x92159c78f0f4523b9c60382bb888f30f10a46b3b"
SIGNATURE = "0x" + "ab" * 64 + "1b"


def make_result(scalar=None, scalars=None, rowcount=0, mappings=None):
    """What AsyncSession.execute returns, for the accessors the code uses."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalars.return_value = list(scalars or [])
    result.rowcount = rowcount
    result.mappings.return_value.all.return_value = list(mappings or [])
    return result


def make_session():
    session = MagicMock()
    session.execute = AsyncMock(return_value=make_result())
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.get = AsyncMock(return_value=None)
    return session


def session_factory_for(session):
    @asynccontextmanager
    async def factory():
        yield session

    return factory


def make_graph():
    graph = MagicMock()
    graph.get_nft = AsyncMock(return_value=None)
    graph.get_active_rental = AsyncMock(return_value=None)
    graph.get_rentals_by_signatures = AsyncMock(return_value=[])
    graph.get_nfts_updated_after = AsyncMock(return_value=[])
    graph.get_rentals_updated_after = AsyncMock(return_value=[])
    graph.get_index_updates_after = AsyncMock(return_value=[])
    graph.close = AsyncMock()
    return graph


def make_nft(**overrides) -> NFT:
    values = dict(
        id=f"{LAND}-1",
        category=NFTCategory.PARCEL,
        contract_address=LAND,
        token_id="1",
        owner_address=LESSOR,
        search_text="Parcel 10,20",
        created_at=NOW - timedelta(days=365),
        updated_at=NOW - timedelta(days=1),
        distance_to_plaza=5,
        adjacent_to_road=True,
        estate_size=0,
    )
    values.update(overrides)
    return NFT(**values)


def make_indexer_rental(**overrides) -> IndexerRental:
    values = dict(
        id=f"{LAND}:1:1",
        contract_address=LAND,
        rental_contract_address=ESCROW,
        token_id="1",
        lessor=LESSOR,
        tenant=TENANT,
        operator=TENANT,
        rental_days=30,
        started_at=NOW - timedelta(hours=2),
        ends_at=NOW + timedelta(days=30),
        updated_at=NOW - timedelta(hours=1),
        price_per_day="10000",
        sender=TENANT,
        owner_has_claimed_asset=False,
        is_extension=False,
        signature=SIGNATURE,
    )
    values.update(overrides)
    return IndexerRental(**values)


def make_rental(**overrides) -> Rental:
    rental_id = overrides.pop("id", uuid.uuid4())
    lessor = overrides.pop("lessor", LESSOR)
    values = dict(
        id=rental_id,
        metadata_id=f"{LAND}-1",
        network="ETHEREUM",
        chain_id=5,
        contract_address=LAND,
        token_id="1",
        expiration=NOW + timedelta(days=10),
        nonces=["0", "0", "0"],
        signature=SIGNATURE,
        rental_contract_address=ESCROW,
        status=RentalStatus.OPEN,
        target="0x0000000000000000000000000000000000000000",
        created_at=NOW - timedelta(days=3),
        updated_at=NOW - timedelta(days=3),
    )
    values.update(overrides)
    rental = Rental(**values)
    rental.listing = RentalListing(id=rental_id, lessor=lessor)
    rental.periods = [
        Period(
            id=uuid.uuid4(),
            rental_id=rental_id,
            min_days=30,
            max_days=30,
            price_per_day=Decimal("10000"),
        )
    ]
    return rental


def make_metadata(**overrides) -> Metadata:
    values = dict(
        id=f"{LAND}-1",
        category="parcel",
        search_text="Parcel 10,20",
        created_at=NOW - timedelta(days=365),
        updated_at=NOW - timedelta(days=2),
        distance_to_plaza=5,
        adjacent_to_road=True,
        estate_size=0,
    )
    values.update(overrides)
    return Metadata(**values)

