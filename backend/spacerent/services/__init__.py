from spacerent.services.access_service import AccessService
from spacerent.services.rental_service import RentalService
from spacerent.services.space_store import SpaceStore

__all__ = ["AccessService", "RentalService", "SpaceStore"]
