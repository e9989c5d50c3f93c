"""Rollup/Analytics Engine.

Cross-entity aggregates for schools, students and governments. Every
number here is computed from the claim ledger and the allocation records
at read time through the shared ledger aggregation; nothing is stored.
"""

from collections import defaultdict
from dataclasses import replace
from datetime import date, datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.core.config import settings
from mealledger.app.core.pagination import Page, clamp_page_size
from mealledger.app.core.windows import (
    LAST_30_DAYS,
    LAST_7_DAYS,
    THIS_MONTH,
    THIS_WEEK,
    TODAY,
    WindowSet,
    add_months,
    build_windows,
    ensure_utc,
    local_date_of,
    month_start,
)
from mealledger.app.db.crud.allocation import (
    allocated_by_menu,
    allocation_totals,
    list_school_allocations_on,
)
from mealledger.app.db.crud.claim import (
    ClaimAggregate,
    ClaimFilter,
    aggregate_claims,
    aggregate_claims_by,
    list_claim_points,
    list_school_claims,
    list_student_claims,
)
from mealledger.app.db.crud.reference import (
    count_students,
    count_students_by_school,
    get_school,
    get_student_by_id,
    list_schools_for_government,
    list_students,
)
from mealledger.app.db.models import Allocation, School
from mealledger.app.exceptions import SchoolNotFound, StudentNotFound
from mealledger.app.services.availability import AvailabilityCalculator

ACTIVE = "active"
MODERATE = "moderate"
INACTIVE = "inactive"
NEVER_CLAIMED = "never_claimed"


def rate(part: float, whole: float) -> float:
    """Percentage rounded to two decimals; 0 when the base is empty."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def classify_activity(
    last_claimed_at: Optional[datetime],
    now: datetime,
    active_days: Optional[int] = None,
    moderate_days: Optional[int] = None,
) -> tuple[str, Optional[int]]:
    """Activity status of a student from the time of their last meal.

    Returns:
        Tuple of (status, days_since_last_meal)
    """
    if last_claimed_at is None:
        return NEVER_CLAIMED, None
    active_days = settings.activity_active_days if active_days is None else active_days
    moderate_days = settings.activity_moderate_days if moderate_days is None else moderate_days

    days = max((ensure_utc(now) - ensure_utc(last_claimed_at)).days, 0)
    if days <= active_days:
        return ACTIVE, days
    if days <= moderate_days:
        return MODERATE, days
    return INACTIVE, days


def allocation_summary(allocation: Allocation) -> dict:
    """Allocation with its embedded menu and school summaries."""
    menu = allocation.menu
    school = allocation.school
    return {
        "id": allocation.id,
        "school_id": allocation.school_id,
        "menu_id": allocation.menu_id,
        "quantity": allocation.quantity,
        "date": allocation.date.isoformat(),
        "created_at": ensure_utc(allocation.created_at).isoformat(),
        "updated_at": ensure_utc(allocation.updated_at).isoformat(),
        "menu": {
            "id": menu.id,
            "name": menu.name,
            "description": menu.description,
            "date": menu.date.isoformat(),
            "price_per_portion": menu.price_per_portion,
            "image_url": menu.image_url,
        },
        "school": {"id": school.id, "name": school.name, "npsn": school.npsn},
    }


class RollupEngine:
    """Read-only aggregates over the allocation records and the ledger."""

    def __init__(self, calculator: Optional[AvailabilityCalculator] = None):
        self.calculator = calculator or AvailabilityCalculator()

    async def _school(self, session: AsyncSession, school_id: str) -> School:
        school = await get_school(session, school_id)
        if school is None:
            raise SchoolNotFound(school_id)
        return school

    async def school_dashboard(
        self,
        session: AsyncSession,
        school_id: str,
        now: Optional[datetime] = None,
    ) -> dict:
        """Meals served by a school today, this week and this month, its
        participation rate and today's allocations with their counts.
        """
        school = await self._school(session, school_id)
        windows = build_windows(now)
        today = local_date_of(windows.now)

        total_students = await count_students(session, school_id=school_id)
        allocation_count, portions, _ = await allocation_totals(session, school_id=school_id)
        ledger = await aggregate_claims(
            session,
            ClaimFilter(school_id=school_id),
            windows.select(TODAY, THIS_WEEK, THIS_MONTH, LAST_30_DAYS),
        )

        todays = await list_school_allocations_on(session, school_id, today)
        summaries = await self.calculator.summarize_many(session, todays, windows=windows)

        return {
            "school": {"id": school.id, "name": school.name, "npsn": school.npsn},
            "total_students": total_students,
            "total_allocations": allocation_count,
            "total_portions_allocated": portions,
            "meals": {
                "today": ledger.windows[TODAY],
                "this_week": ledger.windows[THIS_WEEK],
                "this_month": ledger.windows[THIS_MONTH],
                "last_30_days": ledger.windows[LAST_30_DAYS],
                "total": ledger.total,
            },
            "participation": {
                "unique_students_served": ledger.unique_students,
                "participation_rate": rate(ledger.unique_students, total_students),
            },
            "today_allocations": [
                {**allocation_summary(a), "distribution": summaries[a.id].to_dict()}
                for a in todays
            ],
        }

    async def school_meal_log(
        self,
        session: AsyncSession,
        school_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Page[dict]:
        """Paginated claim history of a school, newest first."""
        await self._school(session, school_id)
        claims = await list_school_claims(
            session,
            school_id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=clamp_page_size(limit),
        )
        rows = [
            {
                "id": claim.id,
                "claimed_at": ensure_utc(claim.claimed_at).isoformat(),
                "service_date": claim.service_date.isoformat(),
                "student": {
                    "id": student.id,
                    "name": student.name,
                    "number": student.student_number,
                    "class": student.class_name,
                    "grade": student.grade,
                },
                "menu": {
                    "id": allocation.menu.id,
                    "name": allocation.menu.name,
                    "date": allocation.menu.date.isoformat(),
                },
                "allocation": {
                    "id": allocation.id,
                    "date": allocation.date.isoformat(),
                    "quantity": allocation.quantity,
                },
            }
            for claim, student, allocation in claims.items
        ]
        return Page(items=rows, total=claims.total, page=claims.page, limit=claims.limit)

    async def student_monitoring(
        self,
        session: AsyncSession,
        school_id: str,
        class_name: Optional[str] = None,
        grade: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Per-student meal statistics and activity status for a school."""
        await self._school(session, school_id)
        windows = build_windows(now)
        students = await list_students(session, school_id, class_name=class_name, grade=grade)
        per_student = await aggregate_claims_by(
            session,
            "student",
            ClaimFilter(school_id=school_id),
            windows.select(THIS_WEEK, THIS_MONTH, LAST_7_DAYS),
        )

        rows = []
        status_counts: dict[str, int] = defaultdict(int)
        total_meals = 0
        for student in students:
            stats = per_student.get(student.id, ClaimAggregate())
            status, days_since = classify_activity(stats.last_claimed_at, windows.now)
            status_counts[status] += 1
            total_meals += stats.total
            rows.append({
                "id": student.id,
                "name": student.name,
                "number": student.student_number,
                "class": student.class_name,
                "grade": student.grade,
                "meal_statistics": {
                    "total_meals": stats.total,
                    "meals_this_week": stats.windows.get(THIS_WEEK, 0),
                    "meals_this_month": stats.windows.get(THIS_MONTH, 0),
                    "recent_meals": stats.windows.get(LAST_7_DAYS, 0),
                    "total_meal_value": stats.total_value,
                    "last_meal_at": stats.last_claimed_at.isoformat() if stats.last_claimed_at else None,
                    "days_since_last_meal": days_since,
                },
                "activity_status": status,
            })

        total_students = len(students)
        return {
            "students": rows,
            "statistics": {
                "total_students": total_students,
                "active_students": status_counts[ACTIVE],
                "moderate_students": status_counts[MODERATE],
                "inactive_students": status_counts[INACTIVE],
                "never_claimed_students": status_counts[NEVER_CLAIMED],
                "average_meals_per_student": round(total_meals / total_students, 2) if total_students else 0.0,
                "activity_rate": rate(status_counts[ACTIVE], total_students),
            },
        }

    async def student_meal_history(
        self,
        session: AsyncSession,
        student_id: str,
        school_id: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """One page of a student's claims, newest first, with summary totals.

        ``school_id`` scopes the lookup for school callers. The stats cover
        every claim of the student regardless of the page or date bounds.
        """
        student = await get_student_by_id(session, student_id)
        if student is None or (school_id is not None and student.school_id != school_id):
            raise StudentNotFound()

        windows = build_windows(now)
        claims = await list_student_claims(
            session,
            student.id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=clamp_page_size(limit),
        )
        stats = await aggregate_claims(
            session,
            ClaimFilter(student_id=student.id),
            windows.select(TODAY, THIS_WEEK, THIS_MONTH),
        )
        return {
            "student": {
                "id": student.id,
                "name": student.name,
                "number": student.student_number,
                "class": student.class_name,
                "grade": student.grade,
            },
            "history": [
                {
                    "id": claim.id,
                    "claimed_at": ensure_utc(claim.claimed_at).isoformat(),
                    "service_date": claim.service_date.isoformat(),
                    "allocation_id": allocation.id,
                    "menu": {
                        "id": allocation.menu.id,
                        "name": allocation.menu.name,
                        "description": allocation.menu.description,
                        "date": allocation.menu.date.isoformat(),
                        "price_per_portion": allocation.menu.price_per_portion,
                        "image_url": allocation.menu.image_url,
                    },
                }
                for claim, allocation in claims.items
            ],
            "pagination": claims.pagination(),
            "stats": {
                "total_meals": stats.total,
                "meals_today": stats.windows[TODAY],
                "meals_this_week": stats.windows[THIS_WEEK],
                "meals_this_month": stats.windows[THIS_MONTH],
                "total_value": stats.total_value,
                "last_meal_at": stats.last_claimed_at.isoformat() if stats.last_claimed_at else None,
            },
        }

    async def government_analytics(
        self,
        session: AsyncSession,
        government_id: str,
        now: Optional[datetime] = None,
        top: int = 10,
    ) -> dict:
        """Overview, recent activity, efficiency, 12-month trends, top
        schools and menu utilization for all schools of a government.
        """
        windows = build_windows(now)
        ledger_filter = ClaimFilter(government_id=government_id)

        schools = await list_schools_for_government(session, government_id)
        total_students = await count_students(session, government_id=government_id)
        allocation_count, portions, budget = await allocation_totals(
            session, government_id=government_id
        )
        ledger = await aggregate_claims(
            session,
            ledger_filter,
            windows.select(TODAY, THIS_WEEK, THIS_MONTH, LAST_30_DAYS),
        )

        return {
            "overview": {
                "total_schools": len(schools),
                "total_students": total_students,
                "total_allocations": allocation_count,
                "total_portions_allocated": portions,
                "total_budget_allocated": budget,
                "total_distributions": ledger.total,
                "unique_students_served": ledger.unique_students,
            },
            "recent_activity": {
                "today_distributions": ledger.windows[TODAY],
                "week_distributions": ledger.windows[THIS_WEEK],
                "month_distributions": ledger.windows[THIS_MONTH],
                "last_30_days_distributions": ledger.windows[LAST_30_DAYS],
            },
            "efficiency": {
                "distribution_rate": rate(ledger.total, portions),
                "participation_rate": rate(ledger.unique_students, total_students),
                "budget_allocated": budget,
                "average_cost_per_meal": round(budget / ledger.total, 2) if ledger.total else 0.0,
            },
            "trends": await self.monthly_trends(session, ledger_filter, windows),
            "top_schools": await self.top_schools(session, government_id, schools, top),
            "menu_utilization": await self.menu_utilization(session, government_id, top),
        }

    async def monthly_trends(
        self,
        session: AsyncSession,
        filters: ClaimFilter,
        windows: WindowSet,
    ) -> list[dict]:
        """Distributions per calendar month over the last 12 months, oldest
        first. Months without claims are included with zeros.
        """
        first_month = month_start(local_date_of(windows.last_12_months))
        points = await list_claim_points(
            session,
            replace(filters, claimed_from=windows.last_12_months),
        )

        buckets: dict[date, dict] = {
            add_months(first_month, i): {"count": 0, "students": set(), "value": 0.0}
            for i in range(12)
        }
        for service_date, student_id, price in points:
            bucket = buckets.get(month_start(service_date))
            if bucket is None:
                continue
            bucket["count"] += 1
            bucket["students"].add(student_id)
            bucket["value"] += price

        return [
            {
                "month": month.strftime("%Y-%m"),
                "distributions": bucket["count"],
                "unique_students": len(bucket["students"]),
                "total_value": round(bucket["value"], 2),
            }
            for month, bucket in sorted(buckets.items())
        ]

    async def top_schools(
        self,
        session: AsyncSession,
        government_id: str,
        schools: list[School],
        top: int = 10,
    ) -> list[dict]:
        per_school = await aggregate_claims_by(
            session, "school", ClaimFilter(government_id=government_id)
        )
        students = await count_students_by_school(session, government_id)
        rows = []
        for school in schools:
            stats = per_school.get(school.id, ClaimAggregate())
            total_students = students.get(school.id, 0)
            rows.append({
                "id": school.id,
                "name": school.name,
                "npsn": school.npsn,
                "total_distributions": stats.total,
                "unique_students_served": stats.unique_students,
                "total_students": total_students,
                "participation_rate": rate(stats.unique_students, total_students),
            })
        rows.sort(key=lambda row: (-row["total_distributions"], row["name"]))
        return rows[:top]

    async def menu_utilization(
        self,
        session: AsyncSession,
        government_id: str,
        top: int = 10,
    ) -> list[dict]:
        per_menu = await aggregate_claims_by(
            session, "menu", ClaimFilter(government_id=government_id)
        )
        rows = []
        for menu, allocated in await allocated_by_menu(session, government_id):
            stats = per_menu.get(menu.id, ClaimAggregate())
            rows.append({
                "id": menu.id,
                "name": menu.name,
                "date": menu.date.isoformat(),
                "price_per_portion": menu.price_per_portion,
                "distribution_count": stats.total,
                "total_allocated": allocated,
                "utilization_rate": rate(stats.total, allocated),
            })
        rows.sort(key=lambda row: (-row["distribution_count"], row["name"]))
        return rows[:top]


# Global instance
_rollup_engine: Optional[RollupEngine] = None


def get_rollup_engine() -> RollupEngine:
    """Get the global RollupEngine instance (singleton)."""
    global _rollup_engine
    if _rollup_engine is None:
        _rollup_engine = RollupEngine()
    return _rollup_engine
