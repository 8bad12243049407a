"""HTTP routers, one per API area"""
from .admin_auth import router as admin_auth_router
from .availability import router as availability_router
from .bookings import router as bookings_router
from .catalog import router as catalog_router
from .cron import router as cron_router
from .customers import router as customers_router
from .payments import router as payments_router
from .square import router as square_router

__all__ = [
    "admin_auth_router",
    "availability_router",
    "bookings_router",
    "catalog_router",
    "cron_router",
    "customers_router",
    "payments_router",
    "square_router",
]
