"""
Translation of rentals errors into HTTP responses.

Error bodies look like ``{"ok": false, "message": ..., "data": {...}}`` where
``data`` carries the identifiers the error was raised with.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rentals_api.services.contracts import ContractNotFound
from rentals_api.services.rentals.errors import (
    CreationFailed,
    InvalidEstate,
    InvalidSignature,
    NFTNotFound,
    RentalAlreadyExists,
    RentalAlreadyExpired,
    RentalNotFound,
    RentalsError,
    UnauthorizedToRent,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[Exception], int] = {
    NFTNotFound: 404,
    RentalNotFound: 404,
    UnauthorizedToRent: 401,
    RentalAlreadyExists: 409,
    InvalidSignature: 400,
    RentalAlreadyExpired: 400,
    InvalidEstate: 400,
    # The chain id comes from the request
    ContractNotFound: 400,
    CreationFailed: 500,
}

ERROR_DATA: dict[type[Exception], tuple[tuple[str, str], ...]] = {
    NFTNotFound: (("contractAddress", "contract_address"), ("tokenId", "token_id")),
    RentalNotFound: (("id", "rental_id"),),
    UnauthorizedToRent: (("ownerAddress", "owner_address"), ("lessorAddress", "lessor_address")),
    RentalAlreadyExists: (("contractAddress", "contract_address"), ("tokenId", "token_id")),
    InvalidSignature: (),
    RentalAlreadyExpired: (
        ("contractAddress", "contract_address"),
        ("tokenId", "token_id"),
        ("expiration", "expiration"),
    ),
    InvalidEstate: (("contractAddress", "contract_address"), ("tokenId", "token_id")),
    ContractNotFound: (("contractName", "contract_name"), ("chainId", "chain_id")),
    CreationFailed: (("contractAddress", "contract_address"), ("tokenId", "token_id")),
}


def error_response(exc: Exception) -> JSONResponse:
    kind = type(exc)
    status_code = STATUS_CODES.get(kind, 500)
    body = {"ok": False, "message": str(exc)}
    fields = ERROR_DATA.get(kind, ())
    if fields:
        body["data"] = {key: getattr(exc, attribute) for key, attribute in fields}
    if status_code >= 500:
        logger.error("Request failed with %s: %s", kind.__name__, exc)
    return JSONResponse(status_code=status_code, content=body)


async def handle_error(request: Request, exc: Exception) -> JSONResponse:
    return error_response(exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RentalsError, handle_error)
    app.add_exception_handler(ContractNotFound, handle_error)
