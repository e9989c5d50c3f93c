"""Distribution summary of one allocation, derived from the ledger."""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.core.windows import THIS_MONTH, THIS_WEEK, TODAY, WindowSet, build_windows
from mealledger.app.db.crud.claim import (
    ClaimAggregate,
    ClaimFilter,
    aggregate_claims,
    aggregate_claims_by,
    count_claims,
)
from mealledger.app.db.models import Allocation


def remaining_portions(quantity: int, distributed: int) -> int:
    """True remaining quantity. May be negative; never clamp before enforcing."""
    return quantity - distributed


@dataclass
class DistributionSummary:
    allocated: int
    distributed: int
    available: int
    distributed_today: int
    distributed_this_week: int
    distributed_this_month: int
    unique_students_served: int

    def to_dict(self) -> dict:
        return asdict(self)


class AvailabilityCalculator:
    """Recomputes allocation counts from the claim ledger on every call.

    There is no stored counter; the ledger is the only source of truth.
    """

    async def distributed_count(self, session: AsyncSession, allocation_id: str) -> int:
        return await count_claims(session, allocation_id)

    async def summarize(
        self,
        session: AsyncSession,
        allocation: Allocation,
        now: Optional[datetime] = None,
        windows: Optional[WindowSet] = None,
    ) -> DistributionSummary:
        """Build the distribution summary of ``allocation``.

        ``available`` is floored at zero here because the summary is for
        display only.
        """
        windows = windows or build_windows(now)
        aggregate = await aggregate_claims(
            session,
            ClaimFilter(allocation_id=allocation.id),
            windows.select(TODAY, THIS_WEEK, THIS_MONTH),
        )
        return self._build(allocation, aggregate)

    async def summarize_many(
        self,
        session: AsyncSession,
        allocations: list[Allocation],
        now: Optional[datetime] = None,
        windows: Optional[WindowSet] = None,
    ) -> dict[str, DistributionSummary]:
        """Summaries for several allocations from one grouped ledger query."""
        if not allocations:
            return {}
        windows = windows or build_windows(now)
        grouped = await aggregate_claims_by(
            session,
            "allocation",
            ClaimFilter(allocation_ids=tuple(a.id for a in allocations)),
            windows.select(TODAY, THIS_WEEK, THIS_MONTH),
        )
        return {
            allocation.id: self._build(allocation, grouped.get(allocation.id, ClaimAggregate()))
            for allocation in allocations
        }

    def _build(self, allocation: Allocation, aggregate: ClaimAggregate) -> DistributionSummary:
        return DistributionSummary(
            allocated=allocation.quantity,
            distributed=aggregate.total,
            available=max(remaining_portions(allocation.quantity, aggregate.total), 0),
            distributed_today=aggregate.windows.get(TODAY, 0),
            distributed_this_week=aggregate.windows.get(THIS_WEEK, 0),
            distributed_this_month=aggregate.windows.get(THIS_MONTH, 0),
            unique_students_served=aggregate.unique_students,
        )
