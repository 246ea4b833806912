from typing import Optional

from rentals_api.services.rentals import RentalsComponent

# Global component instance
_rentals_component: Optional[RentalsComponent] = None


def get_rentals_component() -> RentalsComponent:
    """Get or create the global rentals component."""
    global _rentals_component
    if _rentals_component is None:
        _rentals_component = RentalsComponent()
    return _rentals_component
