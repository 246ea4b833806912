import asyncio
import uuid
from datetime import timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from factories import (
    ESCROW,
    LAND,
    LESSOR,
    NOW,
    SIGNATURE,
    TENANT,
    make_indexer_rental,
    make_metadata,
    make_nft,
    make_rental,
    make_result,
    session_factory_for,
)
from rentals_api.models import Rental, RentalStatus
from rentals_api.models.rental import OPEN_RENTAL_UNIQUE_INDEX
from rentals_api.services.rentals.component import RentalsComponent, violated_constraint
from rentals_api.services.rentals.errors import (
    LEGACY_V_SIGNATURE_REASON,
    CreationFailed,
    InvalidEstate,
    InvalidSignature,
    NFTNotFound,
    RentalAlreadyExists,
    RentalAlreadyExpired,
    RentalNotFound,
    UnauthorizedToRent,
)
from rentals_api.services.rentals.types import (
    FilterBy,
    GetRentalListingParameters,
    NFTCategory,
    PeriodCreation,
    RentalListingCreation,
)
from rentals_api.services.signature import SignatureCheck

NOW_MS = int(NOW.replace(tzinfo=timezone.utc).timestamp()) * 1000


class UniqueViolation(Exception):
    def __init__(self, constraint_name):
        super().__init__(f'duplicate key value violates unique constraint "{constraint_name}"')
        self.constraint_name = constraint_name


def make_creation(**overrides) -> RentalListingCreation:
    values = dict(
        network="ETHEREUM",
        chain_id=5,
        expiration=NOW_MS + 7 * 24 * 3600 * 1000,
        signature=SIGNATURE,
        token_id="1",
        contract_address=LAND,
        rental_contract_address=ESCROW,
        nonces=["0", "0", "0"],
        periods=[PeriodCreation(min_days=30, max_days=30, price_per_day="10000")],
    )
    values.update(overrides)
    return RentalListingCreation(**values)


def make_component(session, graph, check=SignatureCheck.VALID):
    verifier = MagicMock()
    verifier.check.return_value = check
    return RentalsComponent(
        graph=graph,
        verifier=verifier,
        session_factory=session_factory_for(session),
    )


@pytest.fixture(autouse=True)
def frozen_now():
    with patch("rentals_api.services.rentals.component.utc_now", return_value=NOW):
        yield


def create(component, creation=None, lessor=LESSOR):
    return asyncio.run(component.create_rental_listing(creation or make_creation(), lessor))


# ----------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------


def test_expired_listing_is_rejected_before_any_lookup(session, graph):
    component = make_component(session, graph)

    with pytest.raises(RentalAlreadyExpired) as exc_info:
        create(component, make_creation(expiration=NOW_MS - 1000))

    assert exc_info.value.token_id == "1"
    component.verifier.check.assert_not_called()
    graph.get_nft.assert_not_awaited()
    graph.get_active_rental.assert_not_awaited()


def test_legacy_v_signature_has_its_own_reason(session, graph):
    component = make_component(session, graph, SignatureCheck.INVALID_V)

    with pytest.raises(InvalidSignature) as exc_info:
        create(component)

    assert exc_info.value.reason == LEGACY_V_SIGNATURE_REASON
    graph.get_nft.assert_not_awaited()


def test_invalid_signature(session, graph):
    component = make_component(session, graph, SignatureCheck.INVALID)

    with pytest.raises(InvalidSignature) as exc_info:
        create(component)

    assert exc_info.value.reason == "The signature is invalid"


def test_signature_is_checked_with_contract_values(session, graph):
    graph.get_nft.return_value = make_nft()
    session.get.return_value = make_metadata()
    component = make_component(session, graph)

    create(component, lessor=LESSOR.upper().replace("0X", "0x"))

    listing, chain_id = component.verifier.check.call_args.args
    assert chain_id == 5
    assert listing.signer == LESSOR
    assert listing.expiration == str(NOW_MS // 1000 + 7 * 24 * 3600)
    assert listing.indexes == ["0", "0", "0"]
    assert listing.price_per_day == ["10000"]
    assert listing.min_days == ["30"]
    assert listing.max_days == ["30"]


def test_active_rental_on_chain(session, graph):
    graph.get_active_rental.return_value = make_indexer_rental()
    graph.get_nft.return_value = make_nft(owner_address=ESCROW)
    component = make_component(session, graph)

    with pytest.raises(RentalAlreadyExists):
        create(component)
    session.add.assert_not_called()


def test_nft_not_found(session, graph):
    component = make_component(session, graph)

    with pytest.raises(NFTNotFound) as exc_info:
        create(component)

    assert exc_info.value.contract_address == LAND


def test_lessor_must_own_the_land(session, graph):
    graph.get_nft.return_value = make_nft(owner_address=TENANT)
    component = make_component(session, graph)

    with pytest.raises(UnauthorizedToRent) as exc_info:
        create(component)

    assert exc_info.value.owner_address == TENANT
    assert exc_info.value.lessor_address == LESSOR
    session.add.assert_not_called()


def test_land_in_escrow_belongs_to_the_last_lessor(session, graph):
    finished = make_indexer_rental(ends_at=NOW - timedelta(days=1))
    graph.get_active_rental.return_value = finished
    graph.get_nft.return_value = make_nft(owner_address=ESCROW)
    session.get.return_value = make_metadata()
    component = make_component(session, graph)

    listing = create(component)

    assert listing["status"] == "open"


def test_land_in_escrow_of_someone_else(session, graph):
    finished = make_indexer_rental(ends_at=NOW - timedelta(days=1), lessor=TENANT)
    graph.get_active_rental.return_value = finished
    graph.get_nft.return_value = make_nft(owner_address=ESCROW)
    component = make_component(session, graph)

    with pytest.raises(UnauthorizedToRent):
        create(component)


def test_dissolved_estate(session, graph):
    graph.get_nft.return_value = make_nft(category=NFTCategory.ESTATE, estate_size=0)
    component = make_component(session, graph)

    with pytest.raises(InvalidEstate):
        create(component)


def test_create_rental_listing(session, graph):
    nft = make_nft()
    graph.get_nft.return_value = nft
    session.get.return_value = make_metadata()
    component = make_component(session, graph)

    listing = create(component)

    assert listing["status"] == "open"
    assert listing["lessor"] == LESSOR
    assert listing["tenant"] is None
    assert listing["category"] == "parcel"
    assert listing["expiration"] == NOW + timedelta(days=7)
    assert listing["periods"] == [{"min_days": 30, "max_days": 30, "price_per_day": "10000"}]

    (insert_metadata,) = session.execute.await_args.args
    sql = str(insert_metadata.compile(dialect=postgresql.dialect()))
    assert sql.startswith("INSERT INTO metadata")
    assert "ON CONFLICT (id) DO NOTHING" in sql

    (rental,) = session.add.call_args.args
    assert isinstance(rental, Rental)
    assert rental.status is RentalStatus.OPEN
    assert rental.metadata_id == nft.id
    assert len(rental.periods) == 1
    session.flush.assert_awaited_once()
    session.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()


def test_open_rental_race_is_reported_as_already_exists(session, graph):
    graph.get_nft.return_value = make_nft()
    session.flush.side_effect = IntegrityError(
        "INSERT INTO rentals", {}, UniqueViolation(OPEN_RENTAL_UNIQUE_INDEX)
    )
    component = make_component(session, graph)

    with pytest.raises(RentalAlreadyExists):
        create(component)

    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


def test_other_integrity_errors_fail_the_creation(session, graph):
    graph.get_nft.return_value = make_nft()
    session.flush.side_effect = IntegrityError(
        "INSERT INTO periods", {}, UniqueViolation("periods_pkey")
    )
    component = make_component(session, graph)

    with pytest.raises(CreationFailed):
        create(component)
    session.rollback.assert_awaited_once()


def test_database_errors_fail_the_creation(session, graph):
    graph.get_nft.return_value = make_nft()
    session.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection lost"))
    component = make_component(session, graph)

    with pytest.raises(CreationFailed):
        create(component)
    session.rollback.assert_awaited_once()


def test_violated_constraint_from_driver_cause():
    cause = UniqueViolation(OPEN_RENTAL_UNIQUE_INDEX)
    orig = Exception("wrapped")
    orig.__cause__ = cause
    exc = IntegrityError("INSERT", {}, orig)

    assert violated_constraint(exc) == OPEN_RENTAL_UNIQUE_INDEX


def test_violated_constraint_from_message():
    exc = IntegrityError("INSERT", {}, Exception(f'violates "{OPEN_RENTAL_UNIQUE_INDEX}"'))
    assert violated_constraint(exc) == OPEN_RENTAL_UNIQUE_INDEX


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------


def listing_row(**overrides):
    row = {
        "id": uuid.uuid4(),
        "category": "parcel",
        "search_text": "Parcel 10,20",
        "network": "ETHEREUM",
        "chain_id": 5,
        "expiration": NOW,
        "signature": SIGNATURE,
        "nonces": ["0", "0", "0"],
        "token_id": "1",
        "contract_address": LAND,
        "rental_contract_address": ESCROW,
        "lessor": LESSOR,
        "tenant": None,
        "status": "open",
        "target": "0x0000000000000000000000000000000000000000",
        "created_at": NOW,
        "updated_at": NOW,
        "started_at": None,
        "rented_days": None,
        "period_chosen": None,
        "periods": [["1", "7", "100"], ["8", "30", "90"]],
        "rentals_listings_count": 12,
    }
    row.update(overrides)
    return row


def test_get_rental_listings(session, graph):
    session.execute.return_value = make_result(mappings=[listing_row(), listing_row()])
    component = make_component(session, graph)

    listings, total = asyncio.run(
        component.get_rental_listings(
            GetRentalListingParameters(filter_by=FilterBy(status=["open"]), limit=2)
        )
    )

    assert total == 12
    assert len(listings) == 2
    assert listings[0]["periods"] == [
        {"min_days": 1, "max_days": 7, "price_per_day": "100"},
        {"min_days": 8, "max_days": 30, "price_per_day": "90"},
    ]
    (clause,) = session.execute.await_args.args
    assert clause.compile().params["p1"] == ["open"]


def test_get_rental_listings_without_results(session, graph):
    component = make_component(session, graph)

    assert asyncio.run(component.get_rental_listings(GetRentalListingParameters())) == ([], 0)


def test_get_rental_listings_prices(session, graph):
    session.execute.return_value = make_result(
        mappings=[{"price_per_day": 100, "count": 3}, {"price_per_day": 250, "count": 1}]
    )
    component = make_component(session, graph)

    prices = asyncio.run(component.get_rental_listings_prices(FilterBy(rental_days=[7])))

    assert prices == {"100": 3, "250": 1}


# ----------------------------------------------------------------------
# Refresh
# ----------------------------------------------------------------------


def test_refresh_unknown_id(session, graph):
    component = make_component(session, graph)

    with pytest.raises(RentalNotFound):
        asyncio.run(component.refresh_rental_listing("not-a-uuid"))
    session.execute.assert_not_awaited()


def test_refresh_missing_rental(session, graph):
    session.execute.return_value = make_result(scalar=None)
    component = make_component(session, graph)

    with pytest.raises(RentalNotFound) as exc_info:
        asyncio.run(component.refresh_rental_listing(str(uuid.uuid4())))
    assert exc_info.value.rental_id


def test_refresh_missing_nft(session, graph):
    rental = make_rental()
    session.execute.return_value = make_result(scalar=rental)
    session.get.return_value = make_metadata()
    component = make_component(session, graph)

    with pytest.raises(NFTNotFound):
        asyncio.run(component.refresh_rental_listing(str(rental.id)))


def test_refresh_applies_newer_indexer_data(session, graph):
    rental = make_rental()
    metadata = make_metadata()
    session.execute.return_value = make_result(scalar=rental)
    session.get.return_value = metadata
    graph.get_nft.return_value = make_nft(search_text="Renamed", updated_at=NOW)
    graph.get_rentals_by_signatures.return_value = [make_indexer_rental()]
    component = make_component(session, graph)

    listing = asyncio.run(component.refresh_rental_listing(str(rental.id)))

    assert listing["status"] == "executed"
    assert listing["tenant"] == TENANT
    assert listing["rented_days"] == 30
    assert listing["period_chosen"] == str(rental.periods[0].id)
    assert listing["search_text"] == "Renamed"
    assert metadata.updated_at == NOW
    graph.get_rentals_by_signatures.assert_awaited_once_with([SIGNATURE])
    session.commit.assert_awaited_once()


def test_refresh_ignores_stale_indexer_data(session, graph):
    rental = make_rental(updated_at=NOW)
    metadata = make_metadata(updated_at=NOW)
    session.execute.return_value = make_result(scalar=rental)
    session.get.return_value = metadata
    graph.get_nft.return_value = make_nft(search_text="Old name", updated_at=NOW - timedelta(days=5))
    graph.get_rentals_by_signatures.return_value = [
        make_indexer_rental(updated_at=NOW - timedelta(days=1))
    ]
    component = make_component(session, graph)

    listing = asyncio.run(component.refresh_rental_listing(str(rental.id)))

    assert listing["status"] == "open"
    assert listing["tenant"] is None
    assert listing["search_text"] == "Parcel 10,20"


def test_refresh_claimed_rental(session, graph):
    rental = make_rental()
    session.execute.return_value = make_result(scalar=rental)
    session.get.return_value = make_metadata()
    graph.get_nft.return_value = make_nft()
    graph.get_rentals_by_signatures.return_value = [
        make_indexer_rental(owner_has_claimed_asset=True)
    ]
    component = make_component(session, graph)

    listing = asyncio.run(component.refresh_rental_listing(str(rental.id)))

    assert listing["status"] == "claimed"
