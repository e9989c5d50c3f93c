"""Claim ledger operations.

The ledger is append-only: rows are inserted by the redemption path and
never updated. Every distribution number in the service is derived from
these rows through ``aggregate_claims`` / ``aggregate_claims_by``.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Mapping, Optional

from sqlalchemy import case, distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.core.pagination import Page
from mealledger.app.core.windows import ensure_utc
from mealledger.app.db.models import Allocation, ClaimEvent, Menu, School, Student
from mealledger.app.exceptions import AlreadyClaimed


@dataclass(frozen=True)
class ClaimFilter:
    """Which ledger rows an aggregate covers. Unset fields do not filter."""

    allocation_id: Optional[str] = None
    allocation_ids: Optional[tuple[str, ...]] = None
    student_id: Optional[str] = None
    school_id: Optional[str] = None
    government_id: Optional[str] = None
    menu_id: Optional[str] = None
    claimed_from: Optional[datetime] = None
    claimed_to: Optional[datetime] = None

    def conditions(self) -> list:
        conditions = []
        if self.allocation_id is not None:
            conditions.append(ClaimEvent.allocation_id == self.allocation_id)
        if self.allocation_ids is not None:
            conditions.append(ClaimEvent.allocation_id.in_(self.allocation_ids))
        if self.student_id is not None:
            conditions.append(ClaimEvent.student_id == self.student_id)
        if self.school_id is not None:
            conditions.append(Allocation.school_id == self.school_id)
        if self.government_id is not None:
            conditions.append(School.government_id == self.government_id)
        if self.menu_id is not None:
            conditions.append(Allocation.menu_id == self.menu_id)
        if self.claimed_from is not None:
            conditions.append(ClaimEvent.claimed_at >= ensure_utc(self.claimed_from))
        if self.claimed_to is not None:
            conditions.append(ClaimEvent.claimed_at < ensure_utc(self.claimed_to))
        return conditions


@dataclass
class ClaimAggregate:
    """Counts derived from a set of ledger rows."""

    total: int = 0
    unique_students: int = 0
    total_value: float = 0.0
    last_claimed_at: Optional[datetime] = None
    windows: dict[str, int] = field(default_factory=dict)


# Grouping keys accepted by aggregate_claims_by
GROUP_KEYS = {
    "student": ClaimEvent.student_id,
    "allocation": ClaimEvent.allocation_id,
    "school": Allocation.school_id,
    "menu": Allocation.menu_id,
}


def _aggregate_columns(windows: Mapping[str, datetime]) -> list:
    columns = [
        func.count(ClaimEvent.id),
        func.count(distinct(ClaimEvent.student_id)),
        func.coalesce(func.sum(Menu.price_per_portion), 0),
        func.max(ClaimEvent.claimed_at),
    ]
    for start in windows.values():
        columns.append(
            func.count(case((ClaimEvent.claimed_at >= ensure_utc(start), ClaimEvent.id)))
        )
    return columns


def _ledger_query(columns: list, filters: ClaimFilter):
    query = (
        select(*columns)
        .select_from(ClaimEvent)
        .join(Allocation, ClaimEvent.allocation_id == Allocation.id)
        .join(Menu, Allocation.menu_id == Menu.id)
    )
    if filters.government_id is not None:
        query = query.join(School, Allocation.school_id == School.id)
    return query.where(*filters.conditions())


def _to_aggregate(row, window_names: list[str]) -> ClaimAggregate:
    total, unique_students, total_value, last_claimed_at, *window_counts = row
    return ClaimAggregate(
        total=int(total or 0),
        unique_students=int(unique_students or 0),
        total_value=float(total_value or 0),
        last_claimed_at=ensure_utc(last_claimed_at) if last_claimed_at else None,
        windows={
            name: int(count or 0) for name, count in zip(window_names, window_counts)
        },
    )


async def aggregate_claims(
    session: AsyncSession,
    filters: ClaimFilter,
    windows: Optional[Mapping[str, datetime]] = None,
) -> ClaimAggregate:
    """Aggregate ledger rows matching ``filters`` in one query.

    Args:
        session: Database session from FastAPI dependency
        filters: Which ledger rows to include
        windows: Named window starts (UTC); each yields the number of
                 matching claims at or after that start

    Returns:
        ClaimAggregate with totals and per-window counts
    """
    windows = windows or {}
    result = await session.execute(
        _ledger_query(_aggregate_columns(windows), filters)
    )
    return _to_aggregate(result.one(), list(windows))


async def aggregate_claims_by(
    session: AsyncSession,
    key: str,
    filters: ClaimFilter,
    windows: Optional[Mapping[str, datetime]] = None,
) -> dict[str, ClaimAggregate]:
    """Same aggregate as ``aggregate_claims``, grouped per student,
    allocation, school or menu. Groups without claims are absent.
    """
    windows = windows or {}
    group_column = GROUP_KEYS[key]
    query = _ledger_query(
        [group_column, *_aggregate_columns(windows)], filters
    ).group_by(group_column)
    result = await session.execute(query)
    return {
        row[0]: _to_aggregate(row[1:], list(windows)) for row in result.all()
    }


async def count_claims(session: AsyncSession, allocation_id: str) -> int:
    """Number of ledger rows referencing an allocation."""
    result = await session.execute(
        select(func.count(ClaimEvent.id)).where(ClaimEvent.allocation_id == allocation_id)
    )
    return result.scalar_one()


async def has_claim(
    session: AsyncSession,
    student_id: str,
    allocation_id: str
) -> bool:
    result = await session.execute(
        select(ClaimEvent.id).where(
            ClaimEvent.student_id == student_id,
            ClaimEvent.allocation_id == allocation_id,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def insert_claim(
    session: AsyncSession,
    student_id: str,
    allocation_id: str,
    claimed_at: datetime,
    service_date: date,
) -> ClaimEvent:
    """Append a claim to the ledger and flush it.

    The caller owns the transaction and commits or rolls back.

    Raises:
        AlreadyClaimed: the (student, allocation) unique constraint rejected
                        the row
    """
    claim = ClaimEvent(
        student_id=student_id,
        allocation_id=allocation_id,
        claimed_at=ensure_utc(claimed_at),
        service_date=service_date,
    )
    session.add(claim)
    try:
        await session.flush()
    except IntegrityError as e:
        message = str(e.orig).lower()
        if "unique" in message or "duplicate key" in message:
            raise AlreadyClaimed(student_id, allocation_id) from e
        raise
    return claim


async def list_school_claims(
    session: AsyncSession,
    school_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: int = 10,
) -> Page[tuple[ClaimEvent, Student, Allocation]]:
    """Meal log of a school: claims newest first with student and allocation.

    ``start_date`` and ``end_date`` bound the local service date, inclusive.
    """
    conditions = [Allocation.school_id == school_id]
    if start_date is not None:
        conditions.append(ClaimEvent.service_date >= start_date)
    if end_date is not None:
        conditions.append(ClaimEvent.service_date <= end_date)

    count_result = await session.execute(
        select(func.count(ClaimEvent.id))
        .join(Allocation, ClaimEvent.allocation_id == Allocation.id)
        .where(*conditions)
    )
    total = count_result.scalar_one()

    result_page: Page = Page(total=total, page=max(page, 1), limit=limit)
    if total == 0:
        return result_page

    result = await session.execute(
        select(ClaimEvent, Student, Allocation)
        .join(Student, ClaimEvent.student_id == Student.id)
        .join(Allocation, ClaimEvent.allocation_id == Allocation.id)
        .where(*conditions)
        .order_by(ClaimEvent.claimed_at.desc(), ClaimEvent.id)
        .offset(result_page.offset)
        .limit(limit)
    )
    result_page.items = [tuple(row) for row in result.unique().all()]
    return result_page


async def list_student_claims(
    session: AsyncSession,
    student_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: int = 10,
) -> Page[tuple[ClaimEvent, Allocation]]:
    """A student's claims, newest first, with the claimed allocation.

    ``start_date`` and ``end_date`` bound the local service date, inclusive.
    """
    conditions = [ClaimEvent.student_id == student_id]
    if start_date is not None:
        conditions.append(ClaimEvent.service_date >= start_date)
    if end_date is not None:
        conditions.append(ClaimEvent.service_date <= end_date)

    count_result = await session.execute(select(func.count(ClaimEvent.id)).where(*conditions))
    total = count_result.scalar_one()

    result_page: Page = Page(total=total, page=max(page, 1), limit=limit)
    if total == 0:
        return result_page

    result = await session.execute(
        select(ClaimEvent, Allocation)
        .join(Allocation, ClaimEvent.allocation_id == Allocation.id)
        .where(*conditions)
        .order_by(ClaimEvent.claimed_at.desc(), ClaimEvent.id)
        .offset(result_page.offset)
        .limit(limit)
    )
    result_page.items = [tuple(row) for row in result.unique().all()]
    return result_page


async def list_claim_points(
    session: AsyncSession,
    filters: ClaimFilter,
) -> list[tuple[date, str, float]]:
    """(service_date, student_id, price) for each matching claim.

    Used for calendar bucketing that the dialects disagree on (month
    truncation), done in Python instead.
    """
    result = await session.execute(
        _ledger_query(
            [ClaimEvent.service_date, ClaimEvent.student_id, Menu.price_per_portion],
            filters,
        )
    )
    return [(service_date, student_id, float(price or 0)) for service_date, student_id, price in result.all()]
