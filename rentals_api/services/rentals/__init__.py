"""
Rental listings of LAND: creation, reads and reconciliation with the indexers.
"""

from rentals_api.services.rentals.component import RentalsComponent

__all__ = ["RentalsComponent"]
