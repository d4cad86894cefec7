"""
Evaluation Status Report

Read-only progress view for one assignment: per enrolled student, how many
distributed evaluations are done and how much of the investment budget is used.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from peergrade.config.settings import settings
from peergrade.orm.evaluation import EvaluationAssignment, EvaluationStatus
from peergrade.orm.investment import Investment
from peergrade.orm.user import User
from peergrade.services.roster_service import get_active_student_ids, get_assignment

logger = logging.getLogger(__name__)


class StatusAssignmentNotFoundError(Exception):
    """Raised when the assignment does not exist."""
    code = "ASSIGNMENT_NOT_FOUND"

    def __init__(self, assignment_id: int):
        self.message = f"Assignment {assignment_id} not found"
        super().__init__(self.message)


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(completed / total * 100)


@dataclass
class StudentEvaluationStatus:
    student_id: int
    full_name: str
    email: str
    total_evaluations: int
    completed_evaluations: int
    investments_made: int
    tokens_used: int

    @property
    def pending_evaluations(self) -> int:
        return self.total_evaluations - self.completed_evaluations

    @property
    def pending_investments(self) -> int:
        return max(settings.MAX_TEAMS_PER_INVESTOR - self.investments_made, 0)

    @property
    def evaluation_progress(self) -> int:
        return progress_percent(self.completed_evaluations, self.total_evaluations)

    @property
    def investment_progress(self) -> int:
        return progress_percent(
            min(self.investments_made, settings.MAX_TEAMS_PER_INVESTOR),
            settings.MAX_TEAMS_PER_INVESTOR
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "full_name": self.full_name,
            "email": self.email,
            "total_evaluations": self.total_evaluations,
            "completed_evaluations": self.completed_evaluations,
            "pending_evaluations": self.pending_evaluations,
            "evaluation_progress": self.evaluation_progress,
            "investments_made": self.investments_made,
            "pending_investments": self.pending_investments,
            "max_investments": settings.MAX_TEAMS_PER_INVESTOR,
            "investment_progress": self.investment_progress,
            "tokens_used": self.tokens_used,
            "tokens_remaining": max(settings.MAX_TOKENS_PER_ASSIGNMENT - self.tokens_used, 0),
        }


async def get_evaluation_status(assignment_id: int, db: AsyncSession) -> List[StudentEvaluationStatus]:
    """Progress of every active student enrolled in the assignment's course."""
    assignment = await get_assignment(assignment_id, db)
    if not assignment:
        raise StatusAssignmentNotFoundError(assignment_id)

    student_ids = await get_active_student_ids(assignment.course_id, db)
    if not student_ids:
        return []

    result = await db.execute(
        select(User.id, User.full_name, User.email).where(User.id.in_(student_ids))
    )
    users = {row[0]: row for row in result.all()}

    result = await db.execute(
        select(
            EvaluationAssignment.evaluator_student_id,
            func.count(EvaluationAssignment.id),
            func.sum(case((EvaluationAssignment.status == EvaluationStatus.COMPLETED, 1), else_=0))
        )
        .where(EvaluationAssignment.assignment_id == assignment_id)
        .group_by(EvaluationAssignment.evaluator_student_id)
    )
    evaluations = {row[0]: (int(row[1]), int(row[2] or 0)) for row in result.all()}

    result = await db.execute(
        select(
            Investment.investor_student_id,
            func.count(Investment.id),
            func.coalesce(func.sum(Investment.tokens), 0)
        )
        .where(Investment.assignment_id == assignment_id)
        .group_by(Investment.investor_student_id)
    )
    investments = {row[0]: (int(row[1]), int(row[2])) for row in result.all()}

    statuses = []
    for student_id in student_ids:
        _, full_name, email = users[student_id]
        total, completed = evaluations.get(student_id, (0, 0))
        made, tokens = investments.get(student_id, (0, 0))
        statuses.append(StudentEvaluationStatus(
            student_id=student_id,
            full_name=full_name,
            email=email,
            total_evaluations=total,
            completed_evaluations=completed,
            investments_made=made,
            tokens_used=tokens,
        ))

    logger.debug(f"Evaluation status for assignment {assignment_id}: {len(statuses)} students")
    return statuses


def summarize_status(statuses: List[StudentEvaluationStatus]) -> Dict[str, Any]:
    """Assignment-wide counts over a status report."""
    total = sum(s.total_evaluations for s in statuses)
    completed = sum(s.completed_evaluations for s in statuses)
    return {
        "students": len(statuses),
        "students_finished": sum(
            1 for s in statuses
            if s.investments_made >= settings.MAX_TEAMS_PER_INVESTOR
        ),
        "total_evaluations": total,
        "completed_evaluations": completed,
        "evaluation_progress": progress_percent(completed, total),
    }
