"""Allocation CRUD operations."""
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.core.pagination import Page
from mealledger.app.db.models import Allocation, Menu, School
from mealledger.app.exceptions import DuplicateAllocation


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate key" in message


async def get_allocation(
    session: AsyncSession,
    allocation_id: str,
    school_id: Optional[str] = None,
    government_id: Optional[str] = None,
) -> Optional[Allocation]:
    """Get an allocation by ID, optionally scoped to a school or government.

    The menu and school summaries are loaded with the allocation.

    Args:
        session: Database session from FastAPI dependency
        allocation_id: The allocation ID
        school_id: If given, the allocation must belong to this school
        government_id: If given, the allocation's school must belong to
                       this government

    Returns:
        Allocation object if found and in scope, None otherwise
    """
    query = (
        select(Allocation)
        .where(Allocation.id == allocation_id)
        .execution_options(populate_existing=True)
    )
    if school_id is not None:
        query = query.where(Allocation.school_id == school_id)
    if government_id is not None:
        query = query.join(School, Allocation.school_id == School.id).where(
            School.government_id == government_id
        )
    result = await session.execute(query)
    return result.unique().scalar_one_or_none()


async def lock_allocation(
    session: AsyncSession,
    allocation_id: str,
    school_id: Optional[str] = None,
    government_id: Optional[str] = None,
) -> Optional[Allocation]:
    """Load an allocation and hold a row lock on it until the transaction ends.

    Only the allocation row is locked (``FOR UPDATE OF allocations``); the
    eagerly joined school and menu rows are not. SQLite ignores the lock
    clause, callers there rely on the in-process claim lock instead.
    """
    query = (
        select(Allocation)
        .where(Allocation.id == allocation_id)
        .with_for_update(of=Allocation)
        .execution_options(populate_existing=True)
    )
    if school_id is not None:
        query = query.where(Allocation.school_id == school_id)
    if government_id is not None:
        query = query.join(School, Allocation.school_id == School.id).where(
            School.government_id == government_id
        )
    result = await session.execute(query)
    return result.unique().scalar_one_or_none()


async def find_duplicate_allocation(
    session: AsyncSession,
    school_id: str,
    menu_id: str,
    service_date: date,
    exclude_id: Optional[str] = None,
) -> Optional[str]:
    """Return the id of an allocation with the same (school, menu, date)."""
    query = select(Allocation.id).where(
        Allocation.school_id == school_id,
        Allocation.menu_id == menu_id,
        Allocation.date == service_date,
    )
    if exclude_id is not None:
        query = query.where(Allocation.id != exclude_id)
    result = await session.execute(query.limit(1))
    return result.scalar_one_or_none()


async def list_allocations(
    session: AsyncSession,
    government_id: Optional[str] = None,
    school_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    on_date: Optional[date] = None,
    page: int = 1,
    limit: int = 10,
) -> Page[Allocation]:
    """List allocations, newest service date first, then by school name.

    Args:
        session: Database session from FastAPI dependency
        government_id: Restrict to schools of this government
        school_id: Restrict to one school
        start_date: Inclusive lower bound on the service date
        end_date: Inclusive upper bound on the service date
        on_date: Exact service date
        page: 1-based page number
        limit: Page size

    Returns:
        Page of allocations with the total number of matches
    """
    conditions = []
    if government_id is not None:
        conditions.append(School.government_id == government_id)
    if school_id is not None:
        conditions.append(Allocation.school_id == school_id)
    if start_date is not None:
        conditions.append(Allocation.date >= start_date)
    if end_date is not None:
        conditions.append(Allocation.date <= end_date)
    if on_date is not None:
        conditions.append(Allocation.date == on_date)

    count_result = await session.execute(
        select(func.count(Allocation.id))
        .join(School, Allocation.school_id == School.id)
        .where(*conditions)
    )
    total = count_result.scalar_one()

    result_page: Page[Allocation] = Page(total=total, page=max(page, 1), limit=limit)
    if total == 0:
        return result_page

    result = await session.execute(
        select(Allocation)
        .join(School, Allocation.school_id == School.id)
        .where(*conditions)
        .order_by(Allocation.date.desc(), School.name, Allocation.id)
        .offset(result_page.offset)
        .limit(limit)
    )
    result_page.items = list(result.unique().scalars().all())
    return result_page


async def list_school_allocations_on(
    session: AsyncSession,
    school_id: str,
    on_date: date,
) -> list[Allocation]:
    """Every allocation of a school for one service date, unpaged."""
    result = await session.execute(
        select(Allocation)
        .where(Allocation.school_id == school_id, Allocation.date == on_date)
        .order_by(Allocation.created_at, Allocation.id)
    )
    return list(result.unique().scalars().all())


async def allocation_totals(
    session: AsyncSession,
    government_id: Optional[str] = None,
    school_id: Optional[str] = None,
    on_date: Optional[date] = None,
) -> tuple[int, int, float]:
    """Count allocations and sum their portions and budget.

    Returns:
        Tuple of (allocation_count, portions_allocated, budget_allocated)
    """
    query = (
        select(
            func.count(Allocation.id),
            func.coalesce(func.sum(Allocation.quantity), 0),
            func.coalesce(func.sum(Allocation.quantity * Menu.price_per_portion), 0),
        )
        .join(School, Allocation.school_id == School.id)
        .join(Menu, Allocation.menu_id == Menu.id)
    )
    if government_id is not None:
        query = query.where(School.government_id == government_id)
    if school_id is not None:
        query = query.where(Allocation.school_id == school_id)
    if on_date is not None:
        query = query.where(Allocation.date == on_date)
    count, portions, budget = (await session.execute(query)).one()
    return int(count), int(portions), float(budget)


async def create_allocation(
    session: AsyncSession,
    school_id: str,
    menu_id: str,
    quantity: int,
    service_date: date,
    auto_commit: bool = True
) -> Allocation:
    """Insert a new allocation.

    Args:
        session: Database session from FastAPI dependency
        school_id: Receiving school
        menu_id: Allocated menu
        quantity: Number of portions
        service_date: Date the portions are served
        auto_commit: Whether to commit the transaction. Set to False
                     if you want to control transaction boundaries manually.

    Returns:
        The created Allocation with menu and school loaded

    Raises:
        DuplicateAllocation: (school, menu, date) already exists
    """
    allocation = Allocation(
        school_id=school_id,
        menu_id=menu_id,
        quantity=quantity,
        date=service_date,
    )
    session.add(allocation)
    try:
        await session.flush()
        if auto_commit:
            await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if _is_unique_violation(e):
            raise DuplicateAllocation() from e
        raise
    return await get_allocation(session, allocation.id)


async def update_allocation(
    session: AsyncSession,
    allocation: Allocation,
    quantity: Optional[int] = None,
    service_date: Optional[date] = None,
    auto_commit: bool = True
) -> Allocation:
    """Apply a partial update to a loaded allocation.

    Raises:
        DuplicateAllocation: the new date collides with another allocation
    """
    if quantity is not None:
        allocation.quantity = quantity
    if service_date is not None:
        allocation.date = service_date
    try:
        await session.flush()
        if auto_commit:
            await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if _is_unique_violation(e):
            raise DuplicateAllocation() from e
        raise
    return await get_allocation(session, allocation.id)


async def delete_allocation(
    session: AsyncSession,
    allocation: Allocation,
    auto_commit: bool = True
) -> None:
    await session.delete(allocation)
    await session.flush()
    if auto_commit:
        await session.commit()


async def allocated_by_menu(
    session: AsyncSession,
    government_id: str
) -> list[tuple[Menu, int]]:
    """Menus allocated to a government's schools with their total portions."""
    totals = (
        select(Allocation.menu_id, func.sum(Allocation.quantity).label("allocated"))
        .join(School, Allocation.school_id == School.id)
        .where(School.government_id == government_id)
        .group_by(Allocation.menu_id)
        .subquery()
    )
    result = await session.execute(
        select(Menu, totals.c.allocated).join(totals, Menu.id == totals.c.menu_id)
    )
    return [(menu, int(allocated or 0)) for menu, allocated in result.all()]
