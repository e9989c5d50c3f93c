"""Redemption Orchestrator: the only writer to the claim ledger.

One scan runs these steps, stopping at the first failure:

1. parse the student token            -> InvalidTokenFormat
2. resolve the student in the school  -> StudentNotFound
3. load and lock the allocation       -> AllocationNotFound
4. check remaining quantity           -> QuotaExhausted
5. check for an existing claim        -> AlreadyClaimed
6. insert the claim and commit
7. recompute the allocation counts

Steps 3 to 6 run in one transaction holding the allocation row lock and
the in-process claim lock, so two scans of the same allocation never
both see the last portion.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.core.logging import get_log_context, get_logger
from mealledger.app.core.windows import ensure_utc, local_date_of, utc_now
from mealledger.app.db.crud.allocation import lock_allocation
from mealledger.app.db.crud.claim import has_claim, insert_claim
from mealledger.app.db.models import Allocation, ClaimEvent, Student
from mealledger.app.exceptions import (
    AllocationNotFound,
    AlreadyClaimed,
    LedgerError,
    QuotaExhausted,
)
from mealledger.app.services.availability import (
    AvailabilityCalculator,
    DistributionSummary,
    remaining_portions,
)
from mealledger.app.services.claim_locks import ClaimLockRegistry, get_claim_locks
from mealledger.app.services.identity import IdentityResolver

logger = get_logger(__name__)


@dataclass
class RedemptionResult:
    claim: ClaimEvent
    student: Student
    allocation: Allocation
    summary: DistributionSummary

    def to_response(self) -> dict:
        menu = self.allocation.menu
        return {
            "claim": {
                "id": self.claim.id,
                "timestamp": ensure_utc(self.claim.claimed_at).isoformat(),
                "service_date": self.claim.service_date.isoformat(),
            },
            "student": {
                "id": self.student.id,
                "name": self.student.name,
                "number": self.student.student_number,
                "class": self.student.class_name,
                "grade": self.student.grade,
            },
            "menu": {
                "id": menu.id,
                "name": menu.name,
                "description": menu.description,
                "price_per_portion": menu.price_per_portion,
            },
            "allocation": {
                "id": self.allocation.id,
                "date": self.allocation.date.isoformat(),
                "total_quantity": self.summary.allocated,
                "distributed_count": self.summary.distributed,
                "remaining_quantity": self.summary.available,
            },
        }


class RedemptionOrchestrator:
    """Validates and records one meal claim per scan."""

    def __init__(
        self,
        resolver: Optional[IdentityResolver] = None,
        calculator: Optional[AvailabilityCalculator] = None,
        locks: Optional[ClaimLockRegistry] = None,
    ):
        self.resolver = resolver or IdentityResolver()
        self.calculator = calculator or AvailabilityCalculator()
        self._locks = locks

    @property
    def locks(self) -> ClaimLockRegistry:
        return self._locks or get_claim_locks()

    async def redeem(
        self,
        session: AsyncSession,
        school_id: str,
        student_token: str,
        allocation_id: str,
        now: Optional[datetime] = None,
    ) -> RedemptionResult:
        """Record a claim of ``allocation_id`` by the student behind the token.

        Args:
            session: Database session; committed on success, rolled back on
                     any failure inside the critical section
            school_id: The scanning school; student and allocation must
                       both belong to it
            student_token: Scanned token ``<prefix>-<student_number>``
            allocation_id: Allocation being claimed
            now: Claim timestamp, defaults to the current time

        Returns:
            RedemptionResult with the new claim and recomputed counts

        Raises:
            InvalidTokenFormat, StudentNotFound, AllocationNotFound,
            QuotaExhausted, AlreadyClaimed
        """
        claimed_at = ensure_utc(now or utc_now())
        context = get_log_context(school_id=school_id, allocation_id=allocation_id)

        try:
            student_number = self.resolver.parse_token(student_token)
            student = await self.resolver.lookup(session, student_number, school_id)
        except LedgerError as e:
            logger.info(
                f"Claim rejected: {e.error_code}",
                extra={**context, "error_code": e.error_code},
            )
            raise
        context["student_id"] = student.id

        async with self.locks.hold(allocation_id):
            try:
                allocation = await lock_allocation(session, allocation_id, school_id=school_id)
                if allocation is None:
                    raise AllocationNotFound(allocation_id)

                distributed = await self.calculator.distributed_count(session, allocation.id)
                if remaining_portions(allocation.quantity, distributed) <= 0:
                    raise QuotaExhausted(allocation.id, allocation.quantity, distributed)

                if await has_claim(session, student.id, allocation.id):
                    raise AlreadyClaimed(student.id, allocation.id)

                claim = await insert_claim(
                    session,
                    student_id=student.id,
                    allocation_id=allocation.id,
                    claimed_at=claimed_at,
                    service_date=local_date_of(claimed_at),
                )
                await session.commit()
            except LedgerError as e:
                await session.rollback()
                logger.info(
                    f"Claim rejected: {e.error_code}",
                    extra={**context, "error_code": e.error_code},
                )
                raise
            except Exception:
                await session.rollback()
                logger.exception("Claim failed", extra=context)
                raise

        summary = await self.calculator.summarize(session, allocation, now=claimed_at)
        logger.info(
            "Meal claimed",
            extra={
                **context,
                "claim_id": claim.id,
                "distributed": summary.distributed,
                "available": summary.available,
            },
        )
        return RedemptionResult(
            claim=claim, student=student, allocation=allocation, summary=summary
        )


# Global instance
_redemption_orchestrator: Optional[RedemptionOrchestrator] = None


def get_redemption_orchestrator() -> RedemptionOrchestrator:
    """Get the global RedemptionOrchestrator instance (singleton)."""
    global _redemption_orchestrator
    if _redemption_orchestrator is None:
        _redemption_orchestrator = RedemptionOrchestrator()
    return _redemption_orchestrator
