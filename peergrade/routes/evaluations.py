"""
Peer Evaluation Distribution API Routes

- Distribute evaluations for an assignment
- Inspect and clean up stored self-evaluations
- Per-student evaluation progress
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from peergrade.database import get_db
from peergrade.errors import ErrorCode, NotFoundError, from_service_error
from peergrade.schemas.evaluation import (
    DistributeRequest, DistributeResponse, EvaluationAssignmentResponse,
    SelfEvaluationReportResponse, CleanupResponse
)
from peergrade.services.evaluation_distributor import (
    distribute_evaluations, is_assignment_distributed, get_student_evaluations,
    DistributionError
)
from peergrade.services.evaluation_status import (
    get_evaluation_status, summarize_status, StatusAssignmentNotFoundError
)
from peergrade.services.evaluation_validator import (
    find_self_evaluations, cleanup_self_evaluations, SelfEvaluationError
)
from peergrade.services.roster_service import get_assignment

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Peer Evaluations"])


# =============================================================================
# Distribution Endpoints
# =============================================================================

@router.post(
    "/assignments/{assignment_id}/distribute",
    response_model=DistributeResponse,
    status_code=status.HTTP_201_CREATED
)
async def distribute(
    assignment_id: int,
    payload: DistributeRequest,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Distribute peer evaluations for an assignment.

    Each active student is assigned `evaluations_per_student` submitted teams,
    never their own. Students with too few candidates get what is available and
    are listed in `warnings`.
    """
    try:
        result = await distribute_evaluations(
            assignment_id=assignment_id,
            evaluations_per_student=payload.evaluations_per_student,
            start_at=payload.start_at,
            due_at=payload.due_at,
            db=db,
            force=payload.force,
            seed=payload.seed
        )
    except (DistributionError, SelfEvaluationError) as e:
        logger.warning(f"Distribution rejected for assignment {assignment_id}: {e}")
        raise from_service_error(e)

    return result.to_dict()


@router.get("/assignments/{assignment_id}/distribute")
async def distribution_status(
    assignment_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Whether evaluations have been distributed for the assignment."""
    assignment = await get_assignment(assignment_id, db)
    if not assignment:
        raise NotFoundError("Assignment", assignment_id, ErrorCode.ASSIGNMENT_NOT_FOUND)

    return {
        "assignment_id": assignment_id,
        "is_distributed": await is_assignment_distributed(assignment_id, db),
        "is_evaluation_active": assignment.is_evaluation_active,
        "evaluation_start_date": assignment.evaluation_start_date,
        "evaluation_due_date": assignment.evaluation_due_date,
    }


@router.get(
    "/assignments/{assignment_id}/students/{student_id}/evaluations",
    response_model=List[EvaluationAssignmentResponse]
)
async def student_evaluations(
    assignment_id: int,
    student_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Teams a student has been assigned to evaluate."""
    return await get_student_evaluations(assignment_id, student_id, db)


# =============================================================================
# Self-Evaluation Endpoints
# =============================================================================

@router.get("/evaluations/self-evaluations", response_model=SelfEvaluationReportResponse)
async def list_self_evaluations(
    assignment_id: Optional[int] = Query(default=None, description="Limit to one assignment"),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Stored evaluation records where the evaluator belongs to the evaluated team."""
    report = await find_self_evaluations(db, assignment_id=assignment_id)
    return report.to_dict()


@router.delete("/evaluations/self-evaluations", response_model=CleanupResponse)
async def delete_self_evaluations(
    assignment_id: Optional[int] = Query(default=None, description="Limit to one assignment"),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Delete every stored self-evaluation. Safe to repeat."""
    cleanup = await cleanup_self_evaluations(db, assignment_id=assignment_id)
    if cleanup.errors:
        logger.error(f"Self-evaluation cleanup finished with errors: {cleanup.errors}")
    return cleanup.to_dict()


# =============================================================================
# Progress Endpoint
# =============================================================================

@router.get("/assignments/{assignment_id}/evaluation-status")
async def evaluation_status(
    assignment_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Per-student evaluation and investment progress."""
    try:
        statuses = await get_evaluation_status(assignment_id, db)
    except StatusAssignmentNotFoundError as e:
        raise from_service_error(e)

    return {
        "assignment_id": assignment_id,
        "summary": summarize_status(statuses),
        "students": [s.to_dict() for s in statuses],
    }
