"""
Registry of the on-chain contracts the service needs to know about, per chain.
"""

from dataclasses import dataclass

from rentals_api.core.config import settings

RENTALS_CONTRACT = "Rentals"


@dataclass(frozen=True)
class ContractData:
    name: str
    address: str
    version: str
    chain_id: int


class ContractNotFound(Exception):
    def __init__(self, contract_name: str, chain_id: int):
        super().__init__("The contract with the provided name and chain id was not found")
        self.contract_name = contract_name
        self.chain_id = chain_id


CONTRACTS: dict[int, dict[str, ContractData]] = {
    # Ethereum mainnet
    1: {
        RENTALS_CONTRACT: ContractData(
            "Rentals", "0x3a1469499d0be105d4f77045ca403a5f6dc2f3f5", "1", 1
        ),
    },
    # Goerli
    5: {
        RENTALS_CONTRACT: ContractData(
            "Rentals", "0x92159c78f0f4523b9c60382bb888f30f10a46b3b", "1", 5
        ),
    },
}


def get_contract(name: str, chain_id: int) -> ContractData:
    """Return the contract registered under ``name`` for ``chain_id``."""
    if (
        name == RENTALS_CONTRACT
        and chain_id == settings.CHAIN_ID
        and settings.RENTALS_CONTRACT_ADDRESS
    ):
        return ContractData("Rentals", settings.RENTALS_CONTRACT_ADDRESS.lower(), "1", chain_id)

    try:
        return CONTRACTS[chain_id][name]
    except KeyError:
        raise ContractNotFound(name, chain_id) from None
