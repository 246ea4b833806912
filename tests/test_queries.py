import re
from datetime import datetime
from decimal import Decimal

import pytest

from rentals_api.services.rentals.queries import (
    SQL,
    get_pagination_params,
    get_rental_listings_prices_query,
    get_rental_listings_query,
    to_text_clause,
)
from rentals_api.services.rentals.types import (
    FilterBy,
    GetRentalListingParameters,
    NFTCategory,
    SortBy,
    SortDirection,
)


def placeholders(query: SQL) -> list[int]:
    return [int(number) for number in re.findall(r"\$(\d+)", query.text)]


def test_sql_numbers_placeholders_in_order():
    query = SQL.of("a = {} ", 1)
    query.append(SQL.of("AND b = {} AND c = {}", 2, 3))
    assert query.text == "a = $1 AND b = $2 AND c = $3"
    assert query.values == [1, 2, 3]


def test_sql_rejects_missing_values():
    with pytest.raises(ValueError):
        SQL.of("a = {} AND b = {}", 1)


def test_status_filter_and_pagination():
    query = get_rental_listings_query(
        GetRentalListingParameters(
            filter_by=FilterBy(status=["executed", "claimed"]), limit=10, page=0
        )
    )

    assert "status = ANY($1)" in query.text
    assert query.values[0] == ["executed", "claimed"]
    assert query.values[-2:] == [10, 0]
    assert query.text.endswith("LIMIT $2 OFFSET $3")


def test_offset_is_page_times_limit():
    query = get_rental_listings_query(GetRentalListingParameters(limit=20, page=3))
    assert query.values == [20, 60]


def test_limit_is_capped():
    query = get_rental_listings_query(GetRentalListingParameters(limit=500))
    assert query.values == [50, 0]


def test_min_price_is_a_having_clause():
    query = get_rental_listings_query(
        GetRentalListingParameters(filter_by=FilterBy(min_price_per_day="10000000"))
    )

    assert "HAVING max(periods.price_per_day) >= $1" in query.text
    assert "AND max(periods.price_per_day)" not in query.text
    assert query.values[0] == Decimal("10000000")


def test_min_and_max_price_share_the_having_clause():
    query = get_rental_listings_query(
        GetRentalListingParameters(
            filter_by=FilterBy(min_price_per_day="10", max_price_per_day="100")
        )
    )

    assert "HAVING max(periods.price_per_day) >= $1\nAND min(periods.price_per_day) <= $2" in query.text
    assert query.text.count("HAVING") == 1


def test_only_max_price():
    query = get_rental_listings_query(
        GetRentalListingParameters(filter_by=FilterBy(max_price_per_day="100"))
    )
    assert "HAVING min(periods.price_per_day) <= $1" in query.text


def test_current_listings_are_distinct_per_land():
    query = get_rental_listings_query(GetRentalListingParameters())
    assert "DISTINCT ON (rentals.metadata_id)" in query.text
    assert "ORDER BY rentals.metadata_id, rentals.created_at DESC" in query.text


def test_history_returns_every_listing():
    query = get_rental_listings_query(GetRentalListingParameters(history=True))
    assert "DISTINCT ON" not in query.text


def test_total_comes_from_a_window_aggregate():
    query = get_rental_listings_query(GetRentalListingParameters())
    assert "COUNT(*) OVER() AS rentals_listings_count" in query.text


def test_default_order():
    query = get_rental_listings_query(GetRentalListingParameters())
    assert "ORDER BY rentals.created_at ASC, rentals.id ASC" in query.text


@pytest.mark.parametrize(
    "sort_by,column",
    [
        (SortBy.LAND_CREATION_DATE, "metadata.created_at"),
        (SortBy.NAME, "metadata.search_text"),
        (SortBy.MAX_RENTAL_PRICE, "rentals.max_price_per_day"),
        (SortBy.MIN_RENTAL_PRICE, "rentals.min_price_per_day"),
    ],
)
def test_sort_by(sort_by, column):
    query = get_rental_listings_query(
        GetRentalListingParameters(sort_by=sort_by, sort_direction=SortDirection.DESC)
    )
    assert f"ORDER BY {column} DESC, rentals.id DESC" in query.text


def test_rental_days_overlap_any_period():
    query = get_rental_listings_query(
        GetRentalListingParameters(filter_by=FilterBy(rental_days=[7, 30]))
    )

    assert "EXISTS (SELECT 1 FROM periods AS rental_periods" in query.text
    assert (
        "((rental_periods.min_days <= $1 AND rental_periods.max_days >= $2) OR "
        "(rental_periods.min_days <= $3 AND rental_periods.max_days >= $4))"
    ) in query.text
    assert query.values[:4] == [7, 7, 30, 30]


def test_metadata_filters():
    query = get_rental_listings_query(
        GetRentalListingParameters(
            filter_by=FilterBy(
                category=NFTCategory.ESTATE,
                text="genesis",
                min_distance_to_plaza=0,
                max_distance_to_plaza=10,
                adjacent_to_road=False,
                min_estate_size=2,
                max_estate_size=5,
            )
        )
    )

    assert "AND metadata.category = $1" in query.text
    assert "AND metadata.search_text ILIKE '%' || $2 || '%'" in query.text
    assert "AND metadata.distance_to_plaza >= $3" in query.text
    assert "AND metadata.distance_to_plaza <= $4" in query.text
    assert "AND metadata.adjacent_to_road = $5" in query.text
    assert "AND metadata.estate_size >= $6" in query.text
    assert "AND metadata.estate_size <= $7" in query.text
    assert query.values[:7] == ["estate", "genesis", 0, 10, False, 2, 5]


def test_rentals_filters():
    query = get_rental_listings_query(
        GetRentalListingParameters(
            filter_by=FilterBy(
                target="0xtarget",
                updated_after=1_700_000_000_000,
                token_id="1",
                contract_addresses=["0xland"],
                network="ETHEREUM",
                lessor="0xlessor",
                tenant="0xtenant",
                nft_ids=["0xland-1"],
            )
        )
    )

    assert "AND rentals.target = $1" in query.text
    assert "AND rentals.updated_at > $2" in query.text
    assert "AND rentals.token_id = $3" in query.text
    assert "AND rentals.contract_address = ANY($4)" in query.text
    assert "AND rentals.network = $5" in query.text
    assert "AND rentals_listings.lessor = $6" in query.text
    assert "AND rentals_listings.tenant = $7" in query.text
    assert "AND rentals.metadata_id = ANY($8)" in query.text
    assert query.values[1] == datetime(2023, 11, 14, 22, 13, 20)


def test_placeholders_are_contiguous_with_every_filter():
    query = get_rental_listings_query(
        GetRentalListingParameters(
            filter_by=FilterBy(
                status=["open"],
                lessor="0xlessor",
                category=NFTCategory.PARCEL,
                rental_days=[1],
                min_price_per_day="1",
                max_price_per_day="2",
            ),
            limit=5,
            page=1,
        )
    )

    assert placeholders(query) == list(range(1, len(query.values) + 1))


def test_prices_query_only_counts_open_listings():
    query = get_rental_listings_prices_query(
        FilterBy(
            status=["executed"],
            adjacent_to_road=True,
            rental_days=[10],
            min_price_per_day="1",
        )
    )

    assert "AND rentals.status = $1" in query.text
    assert query.values[0] == "open"
    assert "ANY(" not in query.text
    assert "AND metadata.adjacent_to_road = $2" in query.text
    assert "AND ((periods.min_days <= $3 AND periods.max_days >= $4))" in query.text
    assert "HAVING" not in query.text
    assert "LIMIT" not in query.text
    assert "ORDER BY" not in query.text
    assert query.text.endswith("GROUP BY periods.price_per_day")


def test_prices_query_without_filters():
    query = get_rental_listings_prices_query(None)
    assert query.values == ["open"]


def test_to_text_clause_binds_values():
    clause = to_text_clause(SQL.of("SELECT * FROM rentals WHERE token_id = {} LIMIT {}", "1", 5))

    assert str(clause) == "SELECT * FROM rentals WHERE token_id = :p1 LIMIT :p2"
    assert clause.compile().params == {"p1": "1", "p2": 5}


def test_to_text_clause_keeps_casts():
    clause = to_text_clause(get_rental_listings_query(GetRentalListingParameters()))
    assert "periods.min_days::text" in str(clause)


@pytest.mark.parametrize(
    "limit,page,expected",
    [
        ("10", "2", (10, 2)),
        (None, None, (50, 0)),
        ("100", None, (50, 0)),
        ("0", "1", (50, 1)),
        ("abc", "-1", (50, 0)),
        (25, 4, (25, 4)),
    ],
)
def test_get_pagination_params(limit, page, expected):
    assert get_pagination_params(limit, page) == expected
