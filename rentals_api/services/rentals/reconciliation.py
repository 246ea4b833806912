"""
Background reconciliation of local listings against the indexers.

Every job follows the same shape:

1. read its watermark from the ``updates`` table,
2. fetch everything the indexer changed after the watermark,
3. apply the changes and advance the watermark in one transaction.

A failure anywhere rolls the whole transaction back, leaving the watermark
where it was so the next run retries the same window.  Jobs never raise:
there is nobody to report to, so errors are logged instead.

Applying the same window twice is harmless.  Inserts are guarded by lookups
or ``ON CONFLICT DO NOTHING`` and cancellations are UPDATEs whose WHERE
clause only matches listings that are still open.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import Numeric, cast, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rentals_api.core.config import settings
from rentals_api.core.database import async_session
from rentals_api.models import (
    Metadata,
    Period,
    Rental,
    RentalListing,
    RentalStatus,
    Update,
    UpdateType,
)
from rentals_api.models.rental import ZERO_ADDRESS
from rentals_api.services.contracts import RENTALS_CONTRACT, get_contract
from rentals_api.services.rentals.adapters import (
    apply_indexer_rental,
    apply_nft,
    insert_metadata_if_missing,
    status_from_indexer,
)
from rentals_api.services.rentals.graph import RentalsGraph
from rentals_api.services.rentals.types import (
    NFT,
    AssetIndexAction,
    AssetIndexUpdate,
    ContractIndexUpdate,
    IndexerRental,
    IndexUpdate,
    SignerIndexUpdate,
    from_seconds,
    utc_now,
)

logger = logging.getLogger(__name__)

EPOCH = from_seconds(0)

# Nonces of listings that were never seen by this service
BOOTSTRAP_NONCES = ["0", "0", "0"]

# Position of each index in Rental.nonces (postgres arrays are 1-based)
CONTRACT_NONCE = 1
SIGNER_NONCE = 2
ASSET_NONCE = 3


def job_start() -> datetime:
    """The watermark a run will advance to: now, truncated to the second."""
    return utc_now().replace(microsecond=0)


async def get_watermark(session: AsyncSession, update_type: UpdateType) -> datetime:
    result = await session.execute(select(Update.updated_at).where(Update.type == update_type))
    return result.scalar_one_or_none() or EPOCH


async def advance_watermark(session: AsyncSession, update_type: UpdateType, moment: datetime):
    # greatest() keeps the watermark monotonic even if clocks disagree
    stmt = pg_insert(Update).values(type=update_type, updated_at=moment)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Update.type],
        set_={"updated_at": func.greatest(Update.updated_at, stmt.excluded.updated_at)},
    )
    await session.execute(stmt)


def cancel_open_rentals(*criteria, moment: datetime):
    """UPDATE that cancels every still-open rental matching ``criteria``."""
    return (
        update(Rental)
        .where(Rental.status == RentalStatus.OPEN, *criteria)
        .values(status=RentalStatus.CANCELLED, updated_at=moment)
        .execution_options(synchronize_session=False)
    )


def _nonce_below(position: int, new_index: int):
    return cast(Rental.nonces[position], Numeric) < new_index


def _lessor_is(signer: str):
    return Rental.id.in_(
        select(RentalListing.id).where(func.lower(RentalListing.lessor) == signer.lower())
    )


def cancellation_for(index_update: IndexUpdate, moment: datetime):
    """
    The UPDATE that invalidates the listings signed with an index older than
    the one in ``index_update``, or None if the update doesn't cancel anything.
    """
    if isinstance(index_update, ContractIndexUpdate):
        return cancel_open_rentals(
            _nonce_below(CONTRACT_NONCE, index_update.new_index), moment=moment
        )
    if isinstance(index_update, SignerIndexUpdate):
        return cancel_open_rentals(
            _lessor_is(index_update.signer),
            _nonce_below(SIGNER_NONCE, index_update.new_index),
            moment=moment,
        )
    if isinstance(index_update, AssetIndexUpdate):
        if index_update.action is AssetIndexAction.RENT:
            # Renting bumps the asset index too, but must not cancel the rental itself
            return None
        if index_update.action is AssetIndexAction.CANCEL:
            return cancel_open_rentals(
                _lessor_is(index_update.signer),
                func.lower(Rental.contract_address) == index_update.contract_address.lower(),
                Rental.token_id == index_update.token_id,
                _nonce_below(ASSET_NONCE, index_update.new_index),
                moment=moment,
            )
        raise TypeError(f"Unhandled asset index action {index_update.action!r}")
    raise TypeError(f"Unhandled index update {type(index_update).__name__}")


class ReconciliationEngine:
    def __init__(
        self,
        graph: Optional[RentalsGraph] = None,
        session_factory: Callable[[], AsyncSession] = async_session,
    ):
        self.graph = graph or RentalsGraph()
        self.session_factory = session_factory

    async def _run(self, name: str, update_type: UpdateType, apply) -> bool:
        """
        Run one job.  ``apply(session, since, start)`` fetches and applies
        the changes; it is wrapped in the job's transaction.
        """
        start = job_start()
        logger.info("[%s] Started", name)
        async with self.session_factory() as session:
            try:
                since = await get_watermark(session, update_type)
                summary = await apply(session, since, start)
                await advance_watermark(session, update_type, start)
                await session.commit()
            except Exception:
                await session.rollback()
                logger.exception("[%s] Failed, rolled back", name)
                return False
        logger.info("[%s] Finished: %s", name, summary)
        return True

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def sync_metadata(self) -> bool:
        return await self._run("Sync metadata", UpdateType.METADATA, self._apply_metadata)

    async def _apply_metadata(self, session: AsyncSession, since: datetime, start: datetime):
        nfts = await self.graph.get_nfts_updated_after(since)
        if not nfts:
            return "no changes"

        by_id = {nft.id: nft for nft in nfts}
        result = await session.execute(select(Metadata).where(Metadata.id.in_(list(by_id))))
        existing = {metadata.id: metadata for metadata in result.scalars()}

        inserted = updated = 0
        for nft in nfts:
            metadata = existing.get(nft.id)
            if metadata is None:
                await session.execute(insert_metadata_if_missing(nft))
                inserted += 1
            elif nft.updated_at > metadata.updated_at:
                apply_nft(metadata, nft)
                updated += 1

        result = await session.execute(
            select(Rental)
            .options(selectinload(Rental.listing))
            .where(Rental.metadata_id.in_(list(by_id)), Rental.status == RentalStatus.OPEN)
        )
        stale = []
        for rental in result.scalars():
            if await self._should_cancel(rental, by_id[rental.metadata_id]):
                stale.append(rental.id)

        cancelled = 0
        if stale:
            # Re-checks the status so a rental executed meanwhile stays executed
            cancellation = await session.execute(
                cancel_open_rentals(Rental.id.in_(stale), moment=start)
            )
            cancelled = cancellation.rowcount

        return f"{inserted} inserted, {updated} updated, {cancelled} rentals cancelled"

    async def _should_cancel(self, rental: Rental, nft: NFT) -> bool:
        """True if the open ``rental`` can no longer be honored by its lessor."""
        if nft.is_dissolved_estate:
            logger.info("Cancelling rental %s: estate %s was dissolved", rental.id, nft.id)
            return True

        owner = nft.owner_address.lower()
        escrow = get_contract(RENTALS_CONTRACT, rental.chain_id).address.lower()
        if owner == escrow:
            # The LAND sits in the rentals contract, the real owner is the lessor there
            indexer_rental = await self.graph.get_active_rental(
                rental.contract_address, rental.token_id
            )
            if indexer_rental is not None:
                owner = indexer_rental.lessor.lower()

        lessor = (rental.listing.lessor or "").lower() if rental.listing else ""
        if owner != lessor:
            logger.info(
                "Cancelling rental %s: owner %s is not the lessor %s", rental.id, owner, lessor
            )
            return True
        return False

    # ------------------------------------------------------------------
    # Rentals
    # ------------------------------------------------------------------

    async def sync_rentals(self) -> bool:
        return await self._run("Sync rentals", UpdateType.RENTALS, self._apply_rentals)

    async def _apply_rentals(self, session: AsyncSession, since: datetime, start: datetime):
        indexer_rentals = await self.graph.get_rentals_updated_after(since)

        updated = bootstrapped = 0
        if indexer_rentals:
            result = await session.execute(
                select(Rental)
                .options(selectinload(Rental.listing), selectinload(Rental.periods))
                .where(Rental.signature.in_([item.signature for item in indexer_rentals]))
            )
            local = {rental.signature: rental for rental in result.scalars()}

            for indexer_rental in indexer_rentals:
                rental = local.get(indexer_rental.signature)
                if rental is not None:
                    apply_indexer_rental(rental, indexer_rental)
                    updated += 1
                elif await self._bootstrap_rental(session, indexer_rental):
                    bootstrapped += 1

        expired = await session.execute(cancel_open_rentals(Rental.expiration < start, moment=start))
        return (
            f"{updated} updated, {bootstrapped} bootstrapped, "
            f"{expired.rowcount} expired listings cancelled"
        )

    async def _bootstrap_rental(self, session: AsyncSession, indexer_rental: IndexerRental) -> bool:
        """Store a rental that happened on-chain without a listing created here."""
        nft = await self.graph.get_nft(indexer_rental.contract_address, indexer_rental.token_id)
        if nft is None:
            logger.warning(
                "Skipping rental %s: NFT %s:%s not found",
                indexer_rental.id,
                indexer_rental.contract_address,
                indexer_rental.token_id,
            )
            return False

        await session.execute(insert_metadata_if_missing(nft))

        rental = Rental(
            id=uuid.uuid4(),
            metadata_id=nft.id,
            network=settings.NETWORK,
            chain_id=settings.CHAIN_ID,
            contract_address=indexer_rental.contract_address,
            token_id=indexer_rental.token_id,
            expiration=EPOCH,
            nonces=list(BOOTSTRAP_NONCES),
            signature=indexer_rental.signature,
            rental_contract_address=indexer_rental.rental_contract_address,
            status=status_from_indexer(indexer_rental),
            target=ZERO_ADDRESS,
            created_at=indexer_rental.started_at,
            updated_at=indexer_rental.updated_at,
            started_at=indexer_rental.started_at,
            rented_days=indexer_rental.rental_days,
        )
        rental.listing = RentalListing(
            id=rental.id, lessor=indexer_rental.lessor, tenant=indexer_rental.tenant
        )
        period = Period(
            id=uuid.uuid4(),
            rental_id=rental.id,
            min_days=indexer_rental.rental_days,
            max_days=indexer_rental.rental_days,
            price_per_day=indexer_rental.price_per_day,
        )
        rental.periods = [period]
        session.add(rental)
        # rentals.period_chosen references periods, which only exist after this flush
        await session.flush()
        rental.period_chosen = period.id
        logger.info("Bootstrapped rental %s from indexer rental %s", rental.id, indexer_rental.id)
        return True

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    async def cancel_stale_rentals(self) -> bool:
        return await self._run("Cancel stale rentals", UpdateType.INDEXES, self._apply_indexes)

    async def _apply_indexes(self, session: AsyncSession, since: datetime, start: datetime):
        index_updates = await self.graph.get_index_updates_after(since)

        cancelled = 0
        for index_update in index_updates:
            stmt = cancellation_for(index_update, start)
            if stmt is None:
                continue
            result = await session.execute(stmt)
            cancelled += result.rowcount
        return f"{len(index_updates)} index updates, {cancelled} rentals cancelled"
