"""
Queries against the marketplace and rentals subgraphs.

Delta queries ("everything updated since X") are paged with a keyset cursor:
each page asks for rows strictly after the ``(timestamp, id)`` of the last row
already seen. A row updated again while the window is being read only moves
forward past the cursor, so no other row shifts out of reach, and there is no
``skip`` ceiling on how large a window can be.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from rentals_api.core.config import settings
from rentals_api.services.rentals.types import (
    NFT,
    IndexerRental,
    IndexUpdate,
    index_update_from_graph,
)
from rentals_api.services.subgraph import SubgraphClient

logger = logging.getLogger(__name__)

NFT_FIELDS = """
    id
    category
    contractAddress
    tokenId
    owner {
      address
    }
    searchText
    searchIsLand
    searchDistanceToPlaza
    searchAdjacentToRoad
    searchEstateSize
    createdAt
    updatedAt
"""

RENTAL_FIELDS = """
    id
    contractAddress
    rentalContractAddress
    tokenId
    lessor
    tenant
    operator
    rentalDays
    startedAt
    endsAt
    updatedAt
    pricePerDay
    sender
    ownerHasClaimedAsset
    isExtension
    signature
"""

NFT_BY_TOKEN_ID = """
query NFTByTokenId($contractAddress: String, $tokenId: String) {
  nfts(first: 1, where: { tokenId: $tokenId, contractAddress: $contractAddress, searchIsLand: true }) {
%s
  }
}
""" % NFT_FIELDS

NFTS_UPDATED_AFTER = """
query UpdatedNFTs($cursor: BigInt, $lastId: ID, $first: Int) {
  nfts(
    first: $first
    orderBy: updatedAt
    orderDirection: asc
    where: {
      or: [
        { updatedAt_gt: $cursor, searchIsLand: true }
        { updatedAt: $cursor, id_gt: $lastId, searchIsLand: true }
      ]
    }
  ) {
%s
  }
}
""" % NFT_FIELDS

RENTALS_BY_SIGNATURES = """
query RentalsBySignatures($signatures: [String!], $first: Int) {
  rentals(first: $first, where: { signature_in: $signatures }) {
%s
  }
}
""" % RENTAL_FIELDS

ACTIVE_RENTAL = """
query ActiveRental($contractAddress: String, $tokenId: String) {
  rentals(
    first: 1
    orderBy: startedAt
    orderDirection: desc
    where: { contractAddress: $contractAddress, tokenId: $tokenId, isActive: true }
  ) {
%s
  }
}
""" % RENTAL_FIELDS

RENTALS_UPDATED_AFTER = """
query UpdatedRentals($cursor: BigInt, $lastId: ID, $first: Int) {
  rentals(
    first: $first
    orderBy: updatedAt
    orderDirection: asc
    where: { or: [{ updatedAt_gt: $cursor }, { updatedAt: $cursor, id_gt: $lastId }] }
  ) {
%s
  }
}
""" % RENTAL_FIELDS

INDEX_UPDATES_AFTER = """
query IndexUpdates($cursor: BigInt, $lastId: ID, $first: Int) {
  indexUpdates(
    first: $first
    orderBy: date
    orderDirection: asc
    where: { or: [{ date_gt: $cursor }, { date: $cursor, id_gt: $lastId }] }
  ) {
    id
    type
    date
    contractUpdate {
      newIndex
    }
    signerUpdate {
      signer
      newIndex
    }
    assetUpdate {
      signer
      contractAddress
      tokenId
      newIndex
      type
    }
  }
}
"""


def _to_seconds(moment: datetime) -> str:
    # Naive datetimes are UTC everywhere in this service
    return str(int((moment - datetime(1970, 1, 1)).total_seconds()))


class RentalsGraph:
    """Typed access to the two indexers the rentals service depends on."""

    def __init__(
        self,
        marketplace: Optional[SubgraphClient] = None,
        rentals: Optional[SubgraphClient] = None,
        page_size: Optional[int] = None,
    ):
        self.marketplace = marketplace or SubgraphClient(settings.MARKETPLACE_SUBGRAPH_URL)
        self.rentals = rentals or SubgraphClient(settings.RENTALS_SUBGRAPH_URL)
        self.page_size = page_size or settings.SUBGRAPH_PAGE_SIZE

    async def close(self):
        await self.marketplace.close()
        await self.rentals.close()

    async def _paginate(
        self,
        client: SubgraphClient,
        query: str,
        entity: str,
        order_field: str,
        since: datetime,
        build: Callable[[dict], object],
    ) -> list:
        # graph-node breaks ties on the order field by id, so (order_field, id)
        # is a total order and the cursor strictly advances on every page.
        # The first page starts at ("since", ""), which also returns rows
        # stamped exactly at the watermark; applying them again is harmless.
        results: dict[str, object] = {}
        cursor, last_id = _to_seconds(since), ""
        while True:
            data = await client.query(
                query, {"cursor": cursor, "lastId": last_id, "first": self.page_size}
            )
            page = data[entity]
            for item in page:
                # A row updated again mid-scan shows up twice; keep the newest
                results.pop(item["id"], None)
                results[item["id"]] = build(item)
            if len(page) < self.page_size:
                logger.debug("Fetched %d %s from %s", len(results), entity, client.url)
                return list(results.values())
            cursor, last_id = page[-1][order_field], page[-1]["id"]

    async def get_nft(self, contract_address: str, token_id: str) -> Optional[NFT]:
        data = await self.marketplace.query(
            NFT_BY_TOKEN_ID,
            {"contractAddress": contract_address, "tokenId": token_id},
        )
        nfts = data["nfts"]
        return NFT.from_graph(nfts[0]) if nfts else None

    async def get_nfts_updated_after(self, since: datetime) -> list[NFT]:
        return await self._paginate(
            self.marketplace,
            NFTS_UPDATED_AFTER,
            "nfts",
            "updatedAt",
            since,
            NFT.from_graph,
        )

    async def get_active_rental(
        self, contract_address: str, token_id: str
    ) -> Optional[IndexerRental]:
        data = await self.rentals.query(
            ACTIVE_RENTAL,
            {"contractAddress": contract_address, "tokenId": token_id},
        )
        rentals = data["rentals"]
        return IndexerRental.from_graph(rentals[0]) if rentals else None

    async def get_rentals_by_signatures(self, signatures: list[str]) -> list[IndexerRental]:
        if not signatures:
            return []
        data = await self.rentals.query(
            RENTALS_BY_SIGNATURES,
            {"signatures": signatures, "first": len(signatures)},
        )
        return [IndexerRental.from_graph(item) for item in data["rentals"]]

    async def get_rentals_updated_after(self, since: datetime) -> list[IndexerRental]:
        return await self._paginate(
            self.rentals,
            RENTALS_UPDATED_AFTER,
            "rentals",
            "updatedAt",
            since,
            IndexerRental.from_graph,
        )

    async def get_index_updates_after(self, since: datetime) -> list[IndexUpdate]:
        return await self._paginate(
            self.rentals,
            INDEX_UPDATES_AFTER,
            "indexUpdates",
            "date",
            since,
            index_update_from_graph,
        )

