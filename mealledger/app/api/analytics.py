"""Aggregate read endpoints for schools, students and governments."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from mealledger.app.db.dependencies import SessionDep
from mealledger.app.middleware.auth import (
    GOVERNMENT,
    SCHOOL,
    STUDENT,
    CallerIdentity,
    require_role,
)
from mealledger.app.services.rollup import get_rollup_engine

router = APIRouter(tags=["analytics"])


@router.get("/school/dashboard")
async def school_dashboard(
    session: SessionDep,
    caller: CallerIdentity = Depends(require_role(SCHOOL)),
) -> dict:
    return {"data": await get_rollup_engine().school_dashboard(session, caller.caller_id)}


@router.get("/school/meal-logs")
async def school_meal_logs(
    session: SessionDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    caller: CallerIdentity = Depends(require_role(SCHOOL)),
) -> dict:
    """Claims recorded at the calling school, newest first."""
    result = await get_rollup_engine().school_meal_log(
        session,
        caller.caller_id,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
    )
    return {"data": result.items, "pagination": result.pagination()}


@router.get("/school/student-monitoring")
async def student_monitoring(
    session: SessionDep,
    class_name: Optional[str] = Query(None, alias="class"),
    grade: Optional[str] = None,
    caller: CallerIdentity = Depends(require_role(SCHOOL)),
) -> dict:
    return {
        "data": await get_rollup_engine().student_monitoring(
            session, caller.caller_id, class_name=class_name, grade=grade
        )
    }


@router.get("/school/students/{student_id}/meal-history")
async def school_student_meal_history(
    student_id: str,
    session: SessionDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    caller: CallerIdentity = Depends(require_role(SCHOOL)),
) -> dict:
    history = await get_rollup_engine().student_meal_history(
        session,
        student_id,
        school_id=caller.caller_id,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
    )
    pagination = history.pop("pagination")
    return {"data": history, "pagination": pagination}


@router.get("/student/meal-history")
async def own_meal_history(
    session: SessionDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    caller: CallerIdentity = Depends(require_role(STUDENT)),
) -> dict:
    """The calling student's own claims."""
    history = await get_rollup_engine().student_meal_history(
        session,
        caller.caller_id,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
    )
    pagination = history.pop("pagination")
    return {"data": history, "pagination": pagination}


@router.get("/gov/analytics")
async def government_analytics(
    session: SessionDep,
    caller: CallerIdentity = Depends(require_role(GOVERNMENT)),
) -> dict:
    return {"data": await get_rollup_engine().government_analytics(session, caller.caller_id)}
