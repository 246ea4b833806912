"""
SQL for listing reads and price aggregates.

Queries are assembled from ``SQL`` fragments.  A fragment is text with ``{}``
markers plus the values bound to them; fragments are concatenated in a fixed
order and only rendered to ``$1..$n`` placeholders at the very end, so
parameters are always numbered consistently no matter which filters apply.
"""

import re
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import TextClause, text

from rentals_api.models.rental import RentalStatus
from rentals_api.services.rentals.types import (
    FilterBy,
    GetRentalListingParameters,
    SortBy,
    SortDirection,
    from_milliseconds,
)

MAX_LIMIT = 50
DEFAULT_PAGE = 0

MARKER = "{}"


@dataclass
class SQL:
    """A piece of SQL and the values of its ``{}`` markers, in order."""

    strings: list[str] = field(default_factory=lambda: [""])
    values: list[Any] = field(default_factory=list)

    @classmethod
    def of(cls, sql: str, *values: Any) -> "SQL":
        strings = sql.split(MARKER)
        if len(strings) != len(values) + 1:
            raise ValueError(
                f"Expected {len(strings) - 1} values for {sql!r}, got {len(values)}"
            )
        return cls(strings, list(values))

    def append(self, other: "SQL | str") -> "SQL":
        if isinstance(other, str):
            other = SQL.of(other)
        self.strings[-1] += other.strings[0]
        self.strings.extend(other.strings[1:])
        self.values.extend(other.values)
        return self

    def __bool__(self) -> bool:
        return bool(self.values) or any(self.strings)

    @property
    def text(self) -> str:
        """The statement with ``$n`` placeholders."""
        rendered = [self.strings[0]]
        for position, chunk in enumerate(self.strings[1:], start=1):
            rendered.append(f"${position}{chunk}")
        return "".join(rendered)


def to_text_clause(statement: SQL) -> TextClause:
    """Turn a statement into a SQLAlchemy clause with ``:pN`` bind parameters."""
    sql = re.sub(r"\$(\d+)", r":p\1", statement.text)
    params = {f"p{position}": value for position, value in enumerate(statement.values, start=1)}
    return text(sql).bindparams(**params)


def get_pagination_params(
    limit: Optional[str | int] = None, page: Optional[str | int] = None
) -> tuple[int, int]:
    """
    Parse raw ``limit`` and ``page`` values.  Anything missing, unparsable or
    out of range falls back to the defaults (50 and 0).
    """
    try:
        parsed_limit = int(limit) if limit is not None else MAX_LIMIT
    except (TypeError, ValueError):
        parsed_limit = MAX_LIMIT
    try:
        parsed_page = int(page) if page is not None else DEFAULT_PAGE
    except (TypeError, ValueError):
        parsed_page = DEFAULT_PAGE

    if parsed_limit < 1 or parsed_limit > MAX_LIMIT:
        parsed_limit = MAX_LIMIT
    if parsed_page < 0:
        parsed_page = DEFAULT_PAGE
    return parsed_limit, parsed_page


# ----------------------------------------------------------------------
# Filters
# ----------------------------------------------------------------------


def rentals_filters(filter_by: Optional[FilterBy]) -> SQL:
    """Predicates over the rentals and rentals_listings tables."""
    query = SQL()
    if filter_by is None:
        return query

    if filter_by.status:
        query.append(SQL.of("AND rentals.status = ANY({})\n", list(filter_by.status)))
    if filter_by.target:
        query.append(SQL.of("AND rentals.target = {}\n", filter_by.target))
    if filter_by.updated_after:
        query.append(
            SQL.of("AND rentals.updated_at > {}\n", from_milliseconds(filter_by.updated_after))
        )
    if filter_by.token_id:
        query.append(SQL.of("AND rentals.token_id = {}\n", filter_by.token_id))
    if filter_by.contract_addresses:
        query.append(
            SQL.of("AND rentals.contract_address = ANY({})\n", list(filter_by.contract_addresses))
        )
    if filter_by.network:
        query.append(SQL.of("AND rentals.network = {}\n", filter_by.network))
    if filter_by.lessor:
        query.append(SQL.of("AND rentals_listings.lessor = {}\n", filter_by.lessor))
    if filter_by.tenant:
        query.append(SQL.of("AND rentals_listings.tenant = {}\n", filter_by.tenant))
    if filter_by.nft_ids:
        query.append(SQL.of("AND rentals.metadata_id = ANY({})\n", list(filter_by.nft_ids)))
    return query


def metadata_filters(filter_by: Optional[FilterBy]) -> SQL:
    """Predicates over the metadata table."""
    query = SQL()
    if filter_by is None:
        return query

    if filter_by.category:
        query.append(SQL.of("AND metadata.category = {}\n", filter_by.category.value))
    if filter_by.text:
        query.append(SQL.of("AND metadata.search_text ILIKE '%' || {} || '%'\n", filter_by.text))
    if filter_by.min_distance_to_plaza is not None:
        query.append(
            SQL.of("AND metadata.distance_to_plaza >= {}\n", filter_by.min_distance_to_plaza)
        )
    if filter_by.max_distance_to_plaza is not None:
        query.append(
            SQL.of("AND metadata.distance_to_plaza <= {}\n", filter_by.max_distance_to_plaza)
        )
    if filter_by.adjacent_to_road is not None:
        query.append(SQL.of("AND metadata.adjacent_to_road = {}\n", filter_by.adjacent_to_road))
    if filter_by.min_estate_size is not None:
        query.append(SQL.of("AND metadata.estate_size >= {}\n", filter_by.min_estate_size))
    if filter_by.max_estate_size is not None:
        query.append(SQL.of("AND metadata.estate_size <= {}\n", filter_by.max_estate_size))
    return query


def rental_days_overlap(rental_days: Optional[list[int]], periods: str = "periods") -> SQL:
    """
    ``(periods.min_days <= d1 AND periods.max_days >= d1) OR ...`` for every
    requested day count, or nothing if no days were requested.
    """
    query = SQL()
    if not rental_days:
        return query

    query.append("(")
    for position, days in enumerate(rental_days):
        if position:
            query.append(" OR ")
        query.append(
            SQL.of(f"({periods}.min_days <= {{}} AND {periods}.max_days >= {{}})", days, days)
        )
    query.append(")")
    return query


def rental_days_filter(filter_by: Optional[FilterBy]) -> SQL:
    """Keep rentals with at least one period that can be rented for the requested days."""
    query = SQL()
    if filter_by is None or not filter_by.rental_days:
        return query

    query.append(
        "AND EXISTS (SELECT 1 FROM periods AS rental_periods "
        "WHERE rental_periods.rental_id = rentals.id AND "
    )
    query.append(rental_days_overlap(filter_by.rental_days, "rental_periods"))
    query.append(")\n")
    return query


def price_filters(filter_by: Optional[FilterBy]) -> SQL:
    """HAVING clause over a rental's aggregated period prices."""
    query = SQL()
    if filter_by is None:
        return query

    if filter_by.min_price_per_day:
        query.append(
            SQL.of(
                "HAVING max(periods.price_per_day) >= {}\n",
                Decimal(filter_by.min_price_per_day),
            )
        )
    if filter_by.max_price_per_day:
        query.append("AND " if filter_by.min_price_per_day else "HAVING ")
        query.append(
            SQL.of("min(periods.price_per_day) <= {}\n", Decimal(filter_by.max_price_per_day))
        )
    return query


SORT_COLUMNS = {
    SortBy.RENTAL_LISTING_DATE: "rentals.created_at",
    SortBy.LAND_CREATION_DATE: "metadata.created_at",
    SortBy.NAME: "metadata.search_text",
    SortBy.MAX_RENTAL_PRICE: "rentals.max_price_per_day",
    SortBy.MIN_RENTAL_PRICE: "rentals.min_price_per_day",
}


def order_by(sort_by: Optional[SortBy], sort_direction: Optional[SortDirection]) -> SQL:
    column = SORT_COLUMNS[sort_by or SortBy.RENTAL_LISTING_DATE]
    direction = (sort_direction or SortDirection.ASC).value.upper()
    # rentals.id keeps pages stable when the sort column ties
    return SQL.of(f"ORDER BY {column} {direction}, rentals.id {direction}\n")


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------


def get_rental_listings_query(params: GetRentalListingParameters) -> SQL:
    """
    Listings joined with their parties, periods and metadata, plus the total
    number of matches in ``rentals_listings_count``.

    Unless ``history`` is set only the newest matching listing of each LAND
    is returned.
    """
    filter_by = params.filter_by
    limit, page = get_pagination_params(params.limit, params.page)

    rentals_query = SQL.of("(SELECT ")
    if not params.history:
        rentals_query.append("DISTINCT ON (rentals.metadata_id) ")
    rentals_query.append(
        "rentals.*, rentals_listings.tenant, rentals_listings.lessor,\n"
        "array_agg(ARRAY[periods.min_days::text, periods.max_days::text, "
        "periods.price_per_day::text] ORDER BY periods.min_days) AS periods,\n"
        "min(periods.price_per_day) AS min_price_per_day,\n"
        "max(periods.price_per_day) AS max_price_per_day\n"
        "FROM rentals, rentals_listings, periods\n"
        "WHERE rentals.id = rentals_listings.id AND periods.rental_id = rentals.id\n"
    )
    rentals_query.append(rentals_filters(filter_by))
    rentals_query.append(rental_days_filter(filter_by))
    rentals_query.append("GROUP BY rentals.id, rentals_listings.id\n")
    rentals_query.append(price_filters(filter_by))
    if not params.history:
        rentals_query.append("ORDER BY rentals.metadata_id, rentals.created_at DESC\n")
    rentals_query.append(") AS rentals\n")

    query = SQL.of(
        "SELECT rentals.*, metadata.category, metadata.search_text, "
        "metadata.distance_to_plaza, metadata.adjacent_to_road, metadata.estate_size, "
        "metadata.created_at AS metadata_created_at, "
        "COUNT(*) OVER() AS rentals_listings_count\n"
        "FROM metadata, "
    )
    query.append(rentals_query)
    query.append("WHERE metadata.id = rentals.metadata_id\n")
    query.append(metadata_filters(filter_by))
    query.append(order_by(params.sort_by, params.sort_direction))
    query.append(SQL.of("LIMIT {} OFFSET {}", limit, page * limit))
    return query


def get_rental_listings_prices_query(filter_by: Optional[FilterBy]) -> SQL:
    """
    Number of open listing periods per price.  Sorting, pagination and the
    price filters don't apply; every other filter does.
    """
    non_price = replace(filter_by or FilterBy(), status=None)

    query = SQL.of(
        "SELECT periods.price_per_day, COUNT(*) AS count\n"
        "FROM periods, rentals, rentals_listings, metadata\n"
        "WHERE periods.rental_id = rentals.id AND rentals_listings.id = rentals.id "
        "AND metadata.id = rentals.metadata_id\n"
        "AND rentals.status = {}\n",
        RentalStatus.OPEN.value,
    )
    query.append(rentals_filters(non_price))
    query.append(metadata_filters(non_price))
    overlap = rental_days_overlap(non_price.rental_days)
    if overlap:
        query.append("AND ").append(overlap).append("\n")
    query.append("GROUP BY periods.price_per_day")
    return query
