"""
Grading and Interest API Routes
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from peergrade.database import get_db
from peergrade.errors import ErrorCode, NotFoundError, from_service_error
from peergrade.services.grading_engine import grade_assignment, get_assignment_grades, GradingError
from peergrade.services.interest_calculator import (
    calculate_assignment_interest, get_student_interest_summary, InterestError
)
from peergrade.services.roster_service import get_assignment

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Grading"])


@router.post("/assignments/{assignment_id}/grade")
async def grade(
    assignment_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Recompute team grades from peer investments.

    Safe to call repeatedly; grades are upserted.
    """
    try:
        result = await grade_assignment(assignment_id, db)
    except GradingError as e:
        raise from_service_error(e)

    return result.to_dict()


@router.get("/assignments/{assignment_id}/grades")
async def list_grades(
    assignment_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Stored grades for an assignment, best rank first."""
    if not await get_assignment(assignment_id, db):
        raise NotFoundError("Assignment", assignment_id, ErrorCode.ASSIGNMENT_NOT_FOUND)

    grades = await get_assignment_grades(assignment_id, db)
    return {
        "assignment_id": assignment_id,
        "grades": [g.to_dict() for g in grades],
    }


@router.post("/assignments/{assignment_id}/calculate-interest")
async def calculate_interest(
    assignment_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Recompute investment interest for every enrolled student. Requires grades."""
    try:
        result = await calculate_assignment_interest(assignment_id, db)
    except InterestError as e:
        logger.warning(f"Interest calculation rejected for assignment {assignment_id}: {e.message}")
        raise from_service_error(e)

    return result.to_dict()


@router.get("/students/{student_id}/interest")
async def student_interest(
    student_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Stored interest for a student, totalled per assignment."""
    return await get_student_interest_summary(student_id, db)
