from datetime import datetime
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from rentals_api.models.rental import ZERO_ADDRESS
from rentals_api.services.rentals import types

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PeriodCreation(CamelModel):
    min_days: int = Field(ge=0)
    max_days: int = Field(ge=0)
    price_per_day: str = Field(pattern=r"^[0-9]+$")

    @model_validator(mode="after")
    def check_range(self):
        if self.max_days < self.min_days:
            raise ValueError("maxDays must be greater than or equal to minDays")
        return self


class RentalListingCreation(CamelModel):
    """
    A listing as signed by the lessor.  ``expiration`` is in milliseconds;
    ``nonces`` are the contract, signer and asset indexes at signing time.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    network: Literal["ETHEREUM", "MATIC"]
    chain_id: int
    expiration: int
    signature: str
    token_id: str = Field(pattern=r"^[0-9]+$")
    contract_address: str = Field(pattern=ADDRESS_PATTERN)
    rental_contract_address: str = Field(pattern=ADDRESS_PATTERN)
    nonces: list[str] = Field(min_length=3, max_length=3)
    periods: list[PeriodCreation] = Field(min_length=1, max_length=100)
    target: str = Field(default=ZERO_ADDRESS, pattern=ADDRESS_PATTERN)

    def to_creation(self) -> types.RentalListingCreation:
        return types.RentalListingCreation(
            network=self.network,
            chain_id=self.chain_id,
            expiration=self.expiration,
            signature=self.signature,
            token_id=self.token_id,
            contract_address=self.contract_address,
            rental_contract_address=self.rental_contract_address,
            nonces=list(self.nonces),
            periods=[
                types.PeriodCreation(
                    min_days=period.min_days,
                    max_days=period.max_days,
                    price_per_day=period.price_per_day,
                )
                for period in self.periods
            ],
            target=self.target,
        )


class Period(CamelModel):
    min_days: int
    max_days: int
    price_per_day: str


class RentalListing(CamelModel):
    id: str
    category: str | None
    search_text: str | None
    network: str
    chain_id: int
    expiration: datetime
    signature: str
    nonces: list[str]
    token_id: str
    contract_address: str
    rental_contract_address: str
    lessor: str | None
    tenant: str | None
    status: str
    target: str
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    rented_days: int | None
    period_chosen: str | None
    periods: list[Period]


class PaginatedResponse(CamelModel, Generic[T]):
    results: list[T]
    total: int
    page: int
    pages: int
    limit: int


class Envelope(CamelModel, Generic[T]):
    ok: bool = True
    data: T
