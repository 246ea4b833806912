LEGACY_V_SIGNATURE_REASON = "The server does not accept ECDSA signatures with V as 0 or 1"


class RentalsError(Exception):
    """Base class for every error raised by the rentals component."""


class InvalidSignature(RentalsError):
    def __init__(self, reason: str = "The signature is invalid"):
        super().__init__(reason)
        self.reason = reason


class RentalAlreadyExpired(RentalsError):
    def __init__(self, contract_address: str, token_id: str, expiration: int):
        super().__init__("The rental listing has already expired")
        self.contract_address = contract_address
        self.token_id = token_id
        self.expiration = expiration


class RentalAlreadyExists(RentalsError):
    def __init__(self, contract_address: str, token_id: str):
        super().__init__("An open rental already exists for this LAND")
        self.contract_address = contract_address
        self.token_id = token_id


class NFTNotFound(RentalsError):
    def __init__(self, contract_address: str, token_id: str):
        super().__init__("The NFT was not found")
        self.contract_address = contract_address
        self.token_id = token_id


class UnauthorizedToRent(RentalsError):
    def __init__(self, owner_address: str, lessor_address: str):
        super().__init__("The owner of the token is not the lessor, it can't rent the token")
        self.owner_address = owner_address
        self.lessor_address = lessor_address


class InvalidEstate(RentalsError):
    def __init__(self, contract_address: str, token_id: str):
        super().__init__("The estate is not valid, it has no parcels")
        self.contract_address = contract_address
        self.token_id = token_id


class RentalNotFound(RentalsError):
    def __init__(self, rental_id: str):
        super().__init__("The rental was not found")
        self.rental_id = rental_id


class CreationFailed(RentalsError):
    def __init__(self, contract_address: str, token_id: str):
        super().__init__("Error creating rental")
        self.contract_address = contract_address
        self.token_id = token_id
