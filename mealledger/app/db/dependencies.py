"""Database dependencies for FastAPI dependency injection.

Usage:
    from mealledger.app.db.dependencies import SessionDep

    @router.get("/allocations/{allocation_id}")
    async def get_allocation(allocation_id: str, session: SessionDep):
        ...
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.db.async_session import get_db

# Usage: async def handler(session: SessionDep)
SessionDep = Annotated[AsyncSession, Depends(get_db)]

__all__ = ["SessionDep"]
