"""Database package for the ledger service.

This package provides:
- Database models (School, Menu, Student, Allocation, ClaimEvent)
- Asynchronous session management
- CRUD operations for all models
- FastAPI dependency injection support
"""

from mealledger.app.db.base import Base
from mealledger.app.db.models import Allocation, ClaimEvent, Menu, School, Student
from mealledger.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    get_async_session,
    get_async_session_maker,
    get_db,
)
from mealledger.app.db.dependencies import SessionDep

__all__ = [
    "Base",
    "Allocation",
    "ClaimEvent",
    "Menu",
    "School",
    "Student",
    "close_async_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_maker",
    "get_db",
    "SessionDep",
]
