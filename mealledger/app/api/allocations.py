"""Allocation management endpoints for governments, and the school view."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field, StrictInt

from mealledger.app.core.logging import get_logger
from mealledger.app.db.dependencies import SessionDep
from mealledger.app.middleware.auth import GOVERNMENT, SCHOOL, CallerIdentity, require_role
from mealledger.app.services.allocation_registry import get_allocation_registry
from mealledger.app.services.availability import AvailabilityCalculator
from mealledger.app.services.rollup import allocation_summary

router = APIRouter(tags=["allocations"])
logger = get_logger(__name__)

calculator = AvailabilityCalculator()


class AllocationCreate(BaseModel):
    """Schema for creating an allocation."""

    school_id: str = Field(..., min_length=1)
    menu_id: str = Field(..., min_length=1)
    # Strict so booleans and numeric strings are rejected; range checks happen
    # in the registry so they surface as invalid_quantity
    quantity: StrictInt
    service_date: date = Field(..., alias="date", description="Service date (YYYY-MM-DD)")

    model_config = ConfigDict(populate_by_name=True)


class AllocationUpdate(BaseModel):
    """Schema for a partial allocation update."""

    quantity: Optional[StrictInt] = None
    service_date: Optional[date] = Field(None, alias="date")

    model_config = ConfigDict(populate_by_name=True)


@router.post("/gov/allocations", status_code=status.HTTP_201_CREATED)
async def create_allocation(
    data: AllocationCreate,
    session: SessionDep,
    caller: CallerIdentity = Depends(require_role(GOVERNMENT)),
) -> dict:
    """Allocate portions of a menu to one of the government's schools."""
    allocation = await get_allocation_registry().create(
        session,
        government_id=caller.caller_id,
        school_id=data.school_id,
        menu_id=data.menu_id,
        quantity=data.quantity,
        service_date=data.service_date,
    )
    return {
        "message": "Menu allocation created successfully",
        "data": allocation_summary(allocation),
    }


@router.get("/gov/allocations")
async def list_government_allocations(
    session: SessionDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    caller: CallerIdentity = Depends(require_role(GOVERNMENT)),
) -> dict:
    result = await get_allocation_registry().find_by_government(
        session,
        caller.caller_id,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
    )
    summaries = await calculator.summarize_many(session, result.items)
    return {
        "data": [
            {**allocation_summary(a), "distribution": summaries[a.id].to_dict()}
            for a in result.items
        ],
        "pagination": result.pagination(),
    }


@router.get("/gov/allocations/{allocation_id}")
async def get_government_allocation(
    allocation_id: str,
    session: SessionDep,
    caller: CallerIdentity = Depends(require_role(GOVERNMENT)),
) -> dict:
    allocation = await get_allocation_registry().find_by_id(
        session, allocation_id, government_id=caller.caller_id
    )
    summary = await calculator.summarize(session, allocation)
    return {"data": {**allocation_summary(allocation), "distribution": summary.to_dict()}}


@router.patch("/gov/allocations/{allocation_id}")
async def update_allocation(
    allocation_id: str,
    data: AllocationUpdate,
    session: SessionDep,
    caller: CallerIdentity = Depends(require_role(GOVERNMENT)),
) -> dict:
    """Change quantity and/or date. Allocations with claims can only grow."""
    allocation = await get_allocation_registry().update(
        session,
        government_id=caller.caller_id,
        allocation_id=allocation_id,
        quantity=data.quantity,
        service_date=data.service_date,
    )
    return {
        "message": "Menu allocation updated successfully",
        "data": allocation_summary(allocation),
    }


@router.delete("/gov/allocations/{allocation_id}")
async def delete_allocation(
    allocation_id: str,
    session: SessionDep,
    caller: CallerIdentity = Depends(require_role(GOVERNMENT)),
) -> dict:
    """Delete an allocation that has no claims."""
    await get_allocation_registry().delete(
        session, government_id=caller.caller_id, allocation_id=allocation_id
    )
    return {"message": "Menu allocation deleted successfully", "id": allocation_id}


@router.get("/school/allocations")
async def list_school_allocations(
    session: SessionDep,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    caller: CallerIdentity = Depends(require_role(SCHOOL)),
) -> dict:
    """Allocations of the calling school with their distribution counts."""
    result = await get_allocation_registry().find_by_school(
        session,
        caller.caller_id,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
    )
    summaries = await calculator.summarize_many(session, result.items)
    return {
        "data": [
            {**allocation_summary(a), "distribution": summaries[a.id].to_dict()}
            for a in result.items
        ],
        "pagination": result.pagination(),
    }


@router.get("/school/allocations/{allocation_id}/distribution")
async def get_school_allocation_distribution(
    allocation_id: str,
    session: SessionDep,
    caller: CallerIdentity = Depends(require_role(SCHOOL)),
) -> dict:
    """Distribution summary of one of the calling school's allocations."""
    allocation = await get_allocation_registry().find_by_id(
        session, allocation_id, school_id=caller.caller_id
    )
    summary = await calculator.summarize(session, allocation)
    return {"data": {"allocation_id": allocation.id, **summary.to_dict()}}
