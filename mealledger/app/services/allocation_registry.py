"""Allocation Registry: owner of the quota records.

Allocations are managed by a government for its own schools. A school
outside the caller's government is reported exactly like a missing one.
"""

from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.core.logging import get_log_context, get_logger
from mealledger.app.core.pagination import Page, clamp_page_size
from mealledger.app.core.windows import local_today
from mealledger.app.db.crud.allocation import (
    create_allocation,
    delete_allocation,
    find_duplicate_allocation,
    get_allocation,
    list_allocations,
    lock_allocation,
    update_allocation,
)
from mealledger.app.db.crud.claim import count_claims
from mealledger.app.db.crud.reference import get_menu, get_school
from mealledger.app.db.models import Allocation
from mealledger.app.exceptions import (
    AllocationNotFound,
    DuplicateAllocation,
    HasClaims,
    InvalidDate,
    InvalidQuantity,
    InvalidReference,
)
from mealledger.app.services.claim_locks import ClaimLockRegistry, get_claim_locks

logger = get_logger(__name__)


def validate_quantity(quantity: int) -> None:
    # bool is an int subclass; reject it explicitly
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity()


def validate_service_date(service_date: date, today: date) -> None:
    if service_date < today:
        raise InvalidDate()


class AllocationRegistry:
    """Create, update, delete and list allocations.

    Mutations of an allocation that already has claims are restricted:
    it cannot be deleted, moved to another date or shrunk. Growing the
    quantity is always allowed.
    """

    def __init__(self, locks: Optional[ClaimLockRegistry] = None):
        self._locks = locks

    @property
    def locks(self) -> ClaimLockRegistry:
        return self._locks or get_claim_locks()

    async def create(
        self,
        session: AsyncSession,
        government_id: str,
        school_id: str,
        menu_id: str,
        quantity: int,
        service_date: date,
        today: Optional[date] = None,
    ) -> Allocation:
        """Create an allocation of ``quantity`` portions for one school.

        Raises:
            InvalidQuantity: quantity is not a positive integer
            InvalidDate: service date is in the past
            InvalidReference: school or menu missing, or school not owned
                              by the government
            DuplicateAllocation: (school, menu, date) already exists
        """
        validate_quantity(quantity)
        validate_service_date(service_date, today or local_today())

        school = await get_school(session, school_id)
        if school is None or school.government_id != government_id:
            raise InvalidReference("school", school_id)
        if await get_menu(session, menu_id) is None:
            raise InvalidReference("menu", menu_id)
        if await find_duplicate_allocation(session, school_id, menu_id, service_date):
            raise DuplicateAllocation()

        allocation = await create_allocation(
            session, school_id, menu_id, quantity, service_date
        )
        logger.info(
            "Allocation created",
            extra=get_log_context(
                school_id=school_id,
                allocation_id=allocation.id,
                caller_id=government_id,
                quantity=quantity,
                service_date=service_date.isoformat(),
            ),
        )
        return allocation

    async def update(
        self,
        session: AsyncSession,
        government_id: str,
        allocation_id: str,
        quantity: Optional[int] = None,
        service_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> Allocation:
        """Partially update an allocation.

        Raises:
            InvalidQuantity / InvalidDate: provided values are invalid
            AllocationNotFound: missing or outside the government's schools
            HasClaims: shrinking or re-dating an allocation with claims
            DuplicateAllocation: the new date collides with another allocation
        """
        if quantity is not None:
            validate_quantity(quantity)
        if service_date is not None:
            validate_service_date(service_date, today or local_today())

        async with self.locks.hold(allocation_id):
            try:
                allocation = await lock_allocation(
                    session, allocation_id, government_id=government_id
                )
                if allocation is None:
                    raise AllocationNotFound(allocation_id)

                distributed = await count_claims(session, allocation.id)
                if distributed:
                    if quantity is not None and quantity < allocation.quantity:
                        raise HasClaims(
                            distributed,
                            "Cannot reduce quantity of an allocation that already has claims",
                        )
                    if service_date is not None and service_date != allocation.date:
                        raise HasClaims(
                            distributed,
                            "Cannot change the date of an allocation that already has claims",
                        )

                if service_date is not None and service_date != allocation.date:
                    duplicate = await find_duplicate_allocation(
                        session,
                        allocation.school_id,
                        allocation.menu_id,
                        service_date,
                        exclude_id=allocation.id,
                    )
                    if duplicate:
                        raise DuplicateAllocation()

                updated = await update_allocation(
                    session, allocation, quantity=quantity, service_date=service_date
                )
            except Exception:
                await session.rollback()
                raise

        logger.info(
            "Allocation updated",
            extra=get_log_context(
                school_id=updated.school_id,
                allocation_id=updated.id,
                caller_id=government_id,
                quantity=updated.quantity,
                service_date=updated.date.isoformat(),
            ),
        )
        return updated

    async def delete(
        self,
        session: AsyncSession,
        government_id: str,
        allocation_id: str,
    ) -> None:
        """Delete an allocation that has no claims.

        Raises:
            AllocationNotFound: missing or outside the government's schools
            HasClaims: claims reference the allocation
        """
        async with self.locks.hold(allocation_id):
            try:
                allocation = await lock_allocation(
                    session, allocation_id, government_id=government_id
                )
                if allocation is None:
                    raise AllocationNotFound(allocation_id)

                distributed = await count_claims(session, allocation.id)
                if distributed:
                    raise HasClaims(
                        distributed,
                        "Cannot delete an allocation that already has claims",
                    )
                school_id = allocation.school_id
                await delete_allocation(session, allocation)
            except Exception:
                await session.rollback()
                raise

        logger.info(
            "Allocation deleted",
            extra=get_log_context(
                school_id=school_id,
                allocation_id=allocation_id,
                caller_id=government_id,
            ),
        )

    async def find_by_id(
        self,
        session: AsyncSession,
        allocation_id: str,
        government_id: Optional[str] = None,
        school_id: Optional[str] = None,
    ) -> Allocation:
        allocation = await get_allocation(
            session, allocation_id, school_id=school_id, government_id=government_id
        )
        if allocation is None:
            raise AllocationNotFound(allocation_id)
        return allocation

    async def find_by_government(
        self,
        session: AsyncSession,
        government_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Page[Allocation]:
        return await list_allocations(
            session,
            government_id=government_id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=clamp_page_size(limit),
        )

    async def find_by_school(
        self,
        session: AsyncSession,
        school_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Page[Allocation]:
        return await list_allocations(
            session,
            school_id=school_id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=clamp_page_size(limit),
        )


# Global instance
_allocation_registry: Optional[AllocationRegistry] = None


def get_allocation_registry() -> AllocationRegistry:
    """Get the global AllocationRegistry instance (singleton)."""
    global _allocation_registry
    if _allocation_registry is None:
        _allocation_registry = AllocationRegistry()
    return _allocation_registry
