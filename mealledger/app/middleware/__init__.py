"""Middleware package for the ledger service."""

from mealledger.app.middleware.auth import CallerIdentity, require_role
from mealledger.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "CallerIdentity",
    "require_role",
    "RequestIdMiddleware",
    "get_request_id",
]
