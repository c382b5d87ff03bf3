from .catalog import Tour, UNLIMITED_STOCK, IMPORT_ONLY_TOUR_NAME
from .sales import SaleLine, CUSTOMER_FIELDS
from .auth import User, SessionToken, ROLES

__all__ = [
    'Tour', 'UNLIMITED_STOCK', 'IMPORT_ONLY_TOUR_NAME',
    'SaleLine', 'CUSTOMER_FIELDS',
    'User', 'SessionToken', 'ROLES',
]
