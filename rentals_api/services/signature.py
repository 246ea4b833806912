"""
Rental listing signature verification.

Listings are signed off-chain by the lessor as EIP-712 typed data against the
Rentals contract of the chain they are meant for.  Some wallets used to sign
with a recovery byte (V) of 0 or 1 instead of the canonical 27 or 28; those
signatures are still recovered, but they are reported as a distinct
INVALID_V outcome because the contract rejects them.
"""

import enum
import logging
from dataclasses import dataclass, field

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import to_checksum_address

from rentals_api.services.contracts import RENTALS_CONTRACT, get_contract

logger = logging.getLogger(__name__)

SIGNATURE_HEX_LENGTH = 130  # 65 bytes
V_OFFSET = 27

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "verifyingContract", "type": "address"},
    {"name": "salt", "type": "bytes32"},
]

LISTING_TYPE = [
    {"name": "signer", "type": "address"},
    {"name": "contractAddress", "type": "address"},
    {"name": "tokenId", "type": "uint256"},
    {"name": "expiration", "type": "uint256"},
    {"name": "indexes", "type": "uint256[3]"},
    {"name": "pricePerDay", "type": "uint256[]"},
    {"name": "maxDays", "type": "uint256[]"},
    {"name": "minDays", "type": "uint256[]"},
    {"name": "target", "type": "address"},
]


def _split_prefix(signature: str) -> tuple[str, str]:
    if signature[:2].lower() == "0x":
        return signature[:2], signature[2:]
    return "", signature


def _last_byte(signature_hex: str) -> int:
    return int(signature_hex[-2:], 16)


def has_valid_v(signature: str) -> bool:
    """
    True if the signature's V is 27 or 28.  Signatures that aren't 65 bytes
    long can't be checked and are considered valid.
    """
    _, body = _split_prefix(signature)
    if len(body) != SIGNATURE_HEX_LENGTH:
        return True
    return _last_byte(body) in (27, 28)


def normalize_to_valid_v(signature: str) -> str:
    """Move a V of 0 or 1 to 27 or 28, leaving valid signatures untouched."""
    if has_valid_v(signature):
        return signature
    prefix, body = _split_prefix(signature)
    return f"{prefix}{body[:-2]}{(_last_byte(body) + V_OFFSET) % 256:02x}"


def normalize_to_legacy_v(signature: str) -> str:
    """Inverse of normalize_to_valid_v: move a V of 27 or 28 to 0 or 1."""
    prefix, body = _split_prefix(signature)
    if len(body) != SIGNATURE_HEX_LENGTH or not has_valid_v(signature):
        return signature
    return f"{prefix}{body[:-2]}{_last_byte(body) - V_OFFSET:02x}"


@dataclass
class ContractRentalListing:
    """A listing as the Rentals contract sees it (every number in base 10)."""

    signer: str
    contract_address: str
    token_id: str
    expiration: str  # seconds since epoch
    indexes: list[str]
    price_per_day: list[str]
    max_days: list[str]
    min_days: list[str]
    signature: str
    target: str = "0x0000000000000000000000000000000000000000"


class SignatureCheck(str, enum.Enum):
    VALID = "valid"
    INVALID = "invalid"
    INVALID_V = "invalid_v"


@dataclass
class SignatureVerifier:
    """Verifies listing signatures against the Rentals contract of a chain."""

    contract_name: str = field(default=RENTALS_CONTRACT)

    def build_typed_data(self, listing: ContractRentalListing, chain_id: int) -> dict:
        """Raises ContractNotFound if the chain has no Rentals contract."""
        contract = get_contract(self.contract_name, chain_id)
        return {
            "types": {
                "EIP712Domain": EIP712_DOMAIN_TYPE,
                "Listing": LISTING_TYPE,
            },
            "primaryType": "Listing",
            "domain": {
                "name": contract.name,
                "version": contract.version,
                "verifyingContract": to_checksum_address(contract.address),
                "salt": chain_id.to_bytes(32, "big"),
            },
            "message": {
                "signer": to_checksum_address(listing.signer),
                "contractAddress": to_checksum_address(listing.contract_address),
                "tokenId": int(listing.token_id),
                "expiration": int(listing.expiration),
                "indexes": [int(index) for index in listing.indexes],
                "pricePerDay": [int(price) for price in listing.price_per_day],
                "maxDays": [int(days) for days in listing.max_days],
                "minDays": [int(days) for days in listing.min_days],
                "target": to_checksum_address(listing.target),
            },
        }

    def recover_signer(self, listing: ContractRentalListing, chain_id: int) -> str:
        typed_data = self.build_typed_data(listing, chain_id)
        _, body = _split_prefix(normalize_to_valid_v(listing.signature))
        signable = encode_typed_data(full_message=typed_data)
        return Account.recover_message(signable, signature=bytes.fromhex(body))

    def check(self, listing: ContractRentalListing, chain_id: int) -> SignatureCheck:
        try:
            recovered = self.recover_signer(listing, chain_id)
        except (ValueError, TypeError, BadSignature, ValidationError) as exc:
            # Malformed signatures or values that don't fit their EIP-712 type
            logger.debug("Signature recovery failed: %s", exc)
            return SignatureCheck.INVALID

        if recovered.lower() != listing.signer.lower():
            return SignatureCheck.INVALID
        if not has_valid_v(listing.signature):
            return SignatureCheck.INVALID_V
        return SignatureCheck.VALID

    def verify(self, listing: ContractRentalListing, chain_id: int) -> bool:
        return self.check(listing, chain_id) is SignatureCheck.VALID
