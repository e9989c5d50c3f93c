"""API endpoints package for the ledger service."""

from mealledger.app.api.allocations import router as allocations_router
from mealledger.app.api.analytics import router as analytics_router
from mealledger.app.api.metrics import router as metrics_router
from mealledger.app.api.redemption import router as redemption_router

__all__ = [
    "allocations_router",
    "analytics_router",
    "metrics_router",
    "redemption_router",
]
