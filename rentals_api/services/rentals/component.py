"""
Rental listings: creation, reads, refresh and the sync entry points.
"""

import asyncio
import logging
import uuid
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rentals_api.core.database import async_session
from rentals_api.models import Metadata, Period, Rental, RentalListing, RentalStatus
from rentals_api.models.rental import OPEN_RENTAL_UNIQUE_INDEX
from rentals_api.services.contracts import RENTALS_CONTRACT, get_contract
from rentals_api.services.rentals.adapters import (
    apply_indexer_rental,
    apply_nft,
    insert_metadata_if_missing,
    row_to_listing,
    serialize_rental,
)
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
from rentals_api.services.rentals.graph import RentalsGraph
from rentals_api.services.rentals.queries import (
    get_rental_listings_prices_query,
    get_rental_listings_query,
    to_text_clause,
)
from rentals_api.services.rentals.reconciliation import ReconciliationEngine
from rentals_api.services.rentals.types import (
    FilterBy,
    GetRentalListingParameters,
    RentalListingCreation,
    from_milliseconds,
    from_milliseconds_to_seconds,
    utc_now,
)
from rentals_api.services.signature import (
    ContractRentalListing,
    SignatureCheck,
    SignatureVerifier,
)

logger = logging.getLogger(__name__)


def build_log_message(action: str, event: str, contract_address: str, token_id: str, lessor: str) -> str:
    return (
        f"[{action}][{event}][contractAddress:{contract_address}]"
        f"[tokenId:{token_id}][lessor:{lessor}]"
    )


def violated_constraint(exc: IntegrityError) -> Optional[str]:
    """Name of the constraint behind an IntegrityError, when the driver reports it."""
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name
    # Fall back to the message for drivers that don't expose it
    if OPEN_RENTAL_UNIQUE_INDEX in str(exc):
        return OPEN_RENTAL_UNIQUE_INDEX
    return None


def to_contract_listing(rental: RentalListingCreation, lessor: str) -> ContractRentalListing:
    return ContractRentalListing(
        signer=lessor,
        contract_address=rental.contract_address,
        token_id=rental.token_id,
        expiration=str(from_milliseconds_to_seconds(rental.expiration)),
        indexes=list(rental.nonces),
        price_per_day=[period.price_per_day for period in rental.periods],
        max_days=[str(period.max_days) for period in rental.periods],
        min_days=[str(period.min_days) for period in rental.periods],
        signature=rental.signature,
        target=rental.target,
    )


class RentalsComponent:
    """
    Entry point for everything the API and the scheduler do with listings.

    The component owns no state besides its collaborators; each call opens
    its own session.
    """

    def __init__(
        self,
        graph: Optional[RentalsGraph] = None,
        verifier: Optional[SignatureVerifier] = None,
        session_factory: Callable[[], AsyncSession] = async_session,
        reconciliation: Optional[ReconciliationEngine] = None,
    ):
        self.graph = graph or RentalsGraph()
        self.verifier = verifier or SignatureVerifier()
        self.session_factory = session_factory
        self.reconciliation = reconciliation or ReconciliationEngine(self.graph, session_factory)

    async def close(self):
        await self.graph.close()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_rental_listing(self, rental: RentalListingCreation, lessor_address: str) -> dict:
        """
        Validate and store a new listing signed by ``lessor_address``.

        Checks run in order and stop at the first failure: expiration,
        signature, active on-chain rental, ownership, estate size.  The
        unique index on open rentals is what finally guarantees a single open
        listing per LAND; losing that race surfaces as RentalAlreadyExists.
        """
        lessor = lessor_address.lower()
        contract_address = rental.contract_address.lower()

        def log(event: str) -> str:
            return build_log_message("Creating", event, contract_address, rental.token_id, lessor)

        logger.info(log("Started"))

        now = utc_now()
        if from_milliseconds(rental.expiration) <= now:
            logger.info(log("Expired"))
            raise RentalAlreadyExpired(contract_address, rental.token_id, rental.expiration)

        check = self.verifier.check(to_contract_listing(rental, lessor), rental.chain_id)
        if check is SignatureCheck.INVALID_V:
            logger.info(log("Legacy V signature"))
            raise InvalidSignature(LEGACY_V_SIGNATURE_REASON)
        if check is not SignatureCheck.VALID:
            logger.info(log("Invalid signature"))
            raise InvalidSignature()

        active_rental, nft = await asyncio.gather(
            self.graph.get_active_rental(contract_address, rental.token_id),
            self.graph.get_nft(contract_address, rental.token_id),
        )

        if active_rental is not None and active_rental.is_active(now):
            logger.info(log("Rental already active on-chain"))
            raise RentalAlreadyExists(contract_address, rental.token_id)

        if nft is None:
            logger.info(log("NFT not found"))
            raise NFTNotFound(contract_address, rental.token_id)
        logger.info(log("NFT found"))

        owner = nft.owner_address.lower()
        escrow = get_contract(RENTALS_CONTRACT, rental.chain_id).address.lower()
        if owner == escrow and active_rental is not None:
            # Rented LAND stays in the rentals contract until the lessor claims it
            owner = active_rental.lessor.lower()
        if owner != lessor:
            logger.info(log("Unauthorized"))
            raise UnauthorizedToRent(owner, lessor)
        logger.info(log("Authorized"))

        if nft.is_dissolved_estate:
            logger.info(log("Dissolved estate"))
            raise InvalidEstate(contract_address, rental.token_id)

        async with self.session_factory() as session:
            try:
                await session.execute(insert_metadata_if_missing(nft))
                logger.debug(log("Inserted metadata"))

                created = Rental(
                    id=uuid.uuid4(),
                    metadata_id=nft.id,
                    network=rental.network,
                    chain_id=rental.chain_id,
                    contract_address=contract_address,
                    token_id=rental.token_id,
                    expiration=from_milliseconds(rental.expiration),
                    nonces=list(rental.nonces),
                    signature=rental.signature,
                    rental_contract_address=rental.rental_contract_address.lower(),
                    status=RentalStatus.OPEN,
                    target=rental.target.lower(),
                    created_at=now,
                    updated_at=now,
                )
                created.listing = RentalListing(id=created.id, lessor=lessor)
                created.periods = [
                    Period(
                        id=uuid.uuid4(),
                        rental_id=created.id,
                        min_days=period.min_days,
                        max_days=period.max_days,
                        price_per_day=period.price_per_day,
                    )
                    for period in rental.periods
                ]
                session.add(created)
                await session.flush()
                logger.debug(log("Inserted rental, listing and periods"))

                metadata = await session.get(Metadata, nft.id)
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info(log("Rolled back"))
                if violated_constraint(exc) == OPEN_RENTAL_UNIQUE_INDEX:
                    raise RentalAlreadyExists(contract_address, rental.token_id) from exc
                raise CreationFailed(contract_address, rental.token_id) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception(log("Rolled back"))
                raise CreationFailed(contract_address, rental.token_id) from exc

        logger.info(log("Created"))
        return serialize_rental(created, metadata)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_rental_listings(self, params: GetRentalListingParameters) -> tuple[list[dict], int]:
        """A page of listings and the total number of matching listings."""
        query = get_rental_listings_query(params)
        async with self.session_factory() as session:
            result = await session.execute(to_text_clause(query))
            rows = result.mappings().all()

        total = int(rows[0]["rentals_listings_count"]) if rows else 0
        return [row_to_listing(row) for row in rows], total

    async def get_rental_listings_prices(self, filter_by: Optional[FilterBy] = None) -> dict[str, int]:
        """How many open listing periods there are for each price per day."""
        query = get_rental_listings_prices_query(filter_by)
        async with self.session_factory() as session:
            result = await session.execute(to_text_clause(query))
            rows = result.mappings().all()

        return {str(row["price_per_day"]): int(row["count"]) for row in rows}

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_rental_listing(self, rental_id: str) -> dict:
        """
        Pull the latest state of a single listing from the indexers.  Local
        data is only overwritten by indexer data that is strictly newer.
        """
        try:
            key = uuid.UUID(str(rental_id))
        except ValueError:
            raise RentalNotFound(rental_id) from None

        async with self.session_factory() as session:
            result = await session.execute(
                select(Rental)
                .options(selectinload(Rental.listing), selectinload(Rental.periods))
                .where(Rental.id == key)
            )
            rental = result.scalar_one_or_none()
            if rental is None:
                raise RentalNotFound(rental_id)
            metadata = await session.get(Metadata, rental.metadata_id)

            nft, indexer_rentals = await asyncio.gather(
                self.graph.get_nft(rental.contract_address, rental.token_id),
                self.graph.get_rentals_by_signatures([rental.signature]),
            )
            if nft is None:
                raise NFTNotFound(rental.contract_address, rental.token_id)

            try:
                if metadata is not None and nft.updated_at > metadata.updated_at:
                    apply_nft(metadata, nft)
                    logger.info("Refreshed metadata %s", metadata.id)

                indexer_rental = indexer_rentals[0] if indexer_rentals else None
                if indexer_rental is not None and indexer_rental.updated_at > rental.updated_at:
                    apply_indexer_rental(rental, indexer_rental)
                    logger.info("Refreshed rental %s to %s", rental.id, rental.status)

                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                raise

        return serialize_rental(rental, metadata)

    # ------------------------------------------------------------------
    # Sync entry points (never raise)
    # ------------------------------------------------------------------

    async def sync_metadata(self) -> bool:
        return await self.reconciliation.sync_metadata()

    async def sync_rentals(self) -> bool:
        return await self.reconciliation.sync_rentals()

    async def cancel_stale_rentals(self) -> bool:
        return await self.reconciliation.cancel_stale_rentals()
