"""Meal redemption endpoint used by school scanning terminals."""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from mealledger.app.api.metrics import CLAIMED, record_redemption
from mealledger.app.core.logging import get_logger
from mealledger.app.db.dependencies import SessionDep
from mealledger.app.exceptions import LedgerError
from mealledger.app.middleware.auth import SCHOOL, CallerIdentity, require_role
from mealledger.app.services.redemption import get_redemption_orchestrator

router = APIRouter(prefix="/school", tags=["redemption"])
logger = get_logger(__name__)


class ClaimRequest(BaseModel):
    """Schema for one scan."""

    student_token: str = Field(..., min_length=1, max_length=255)
    allocation_id: str = Field(..., min_length=1, max_length=64)


@router.post("/claims", status_code=status.HTTP_201_CREATED)
async def claim_meal(
    data: ClaimRequest,
    session: SessionDep,
    caller: CallerIdentity = Depends(require_role(SCHOOL)),
) -> dict:
    """Redeem one portion of an allocation for the scanned student.

    The scanning school is the caller; student and allocation must both
    belong to it.
    """
    try:
        result = await get_redemption_orchestrator().redeem(
            session,
            school_id=caller.caller_id,
            student_token=data.student_token,
            allocation_id=data.allocation_id,
        )
    except LedgerError as e:
        await record_redemption(e.error_code)
        raise

    await record_redemption(CLAIMED)
    return {
        "message": "Meal claimed successfully",
        "data": result.to_response(),
    }
