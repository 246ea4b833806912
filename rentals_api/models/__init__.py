from rentals_api.models.base import Base
from rentals_api.models.metadata import Metadata
from rentals_api.models.rental import Period, Rental, RentalListing, RentalStatus
from rentals_api.models.update import Update, UpdateType

__all__ = [
    "Base",
    "Metadata",
    "Rental",
    "RentalListing",
    "RentalStatus",
    "Period",
    "Update",
    "UpdateType",
]
