"""Core utilities for the ledger service."""

from mealledger.app.core.config import settings
from mealledger.app.core.logging import get_logger, setup_logging
from mealledger.app.core.windows import WindowSet, build_windows, ensure_utc, local_today

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "WindowSet",
    "build_windows",
    "ensure_utc",
    "local_today",
]
