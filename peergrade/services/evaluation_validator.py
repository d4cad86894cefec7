"""
Self-Evaluation Validator

No evaluator may ever review, or invest in, their own team. Enforced twice:
- at write time: is_self_evaluation / ensure_not_self_evaluation are called
  before any evaluation assignment or investment row is inserted
- after the fact: find_self_evaluations / cleanup_self_evaluations sweep the
  stored records and delete violations

Cleanup deletes exactly the rows reported by find_self_evaluations, so running
it twice in a row deletes nothing the second time.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from sqlalchemy import select, delete, and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from peergrade.orm.evaluation import EvaluationAssignment, TeamEvaluation
from peergrade.orm.team import TeamMember

logger = logging.getLogger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class SelfEvaluationError(Exception):
    """Raised when a student would evaluate or invest in their own team."""
    code = "SELF_EVALUATION"

    def __init__(self, student_id: int, team_id: int):
        self.student_id = student_id
        self.team_id = team_id
        self.message = f"Student {student_id} is a member of team {team_id} and cannot evaluate it"
        super().__init__(self.message)


# =============================================================================
# Result Types
# =============================================================================

@dataclass
class IndividualViolation:
    id: int
    assignment_id: int
    evaluator_student_id: int
    evaluated_team_id: int
    submission_id: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "evaluator_student_id": self.evaluator_student_id,
            "evaluated_team_id": self.evaluated_team_id,
            "submission_id": self.submission_id,
        }


@dataclass
class TeamViolation:
    id: int
    assignment_id: int
    evaluator_team_id: int
    evaluated_team_id: int
    submission_id: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "evaluator_team_id": self.evaluator_team_id,
            "evaluated_team_id": self.evaluated_team_id,
            "submission_id": self.submission_id,
        }


@dataclass
class SelfEvaluationReport:
    individual: List[IndividualViolation] = field(default_factory=list)
    team: List[TeamViolation] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.individual) + len(self.team)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "individual": [v.to_dict() for v in self.individual],
            "team": [v.to_dict() for v in self.team],
            "summary": {
                "individual_count": len(self.individual),
                "team_count": len(self.team),
                "has_self_evaluations": self.total > 0,
            },
        }


@dataclass
class CleanupResult:
    deleted_individual: int = 0
    deleted_team: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deleted_individual": self.deleted_individual,
            "deleted_team": self.deleted_team,
            "errors": list(self.errors),
        }


# =============================================================================
# Write-time Checks
# =============================================================================

async def is_self_evaluation(student_id: int, team_id: int, db: AsyncSession) -> bool:
    """
    Check if the student is a member of the team.

    Returns True if evaluating (or investing in) the team would be a self-evaluation.
    """
    result = await db.execute(
        select(TeamMember.id)
        .where(
            and_(
                TeamMember.team_id == team_id,
                TeamMember.student_id == student_id
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def ensure_not_self_evaluation(student_id: int, team_id: int, db: AsyncSession) -> None:
    """Raise SelfEvaluationError if the student belongs to the team."""
    if await is_self_evaluation(student_id, team_id, db):
        logger.warning(f"[SELF-EVALUATION BLOCKED] student={student_id} team={team_id}")
        raise SelfEvaluationError(student_id, team_id)


def assert_no_self_targets(
    pairs: Iterable[Tuple[int, int]],
    membership: Mapping[int, Set[int]]
) -> None:
    """
    Batch form of ensure_not_self_evaluation over an in-memory membership index.

    Args:
        pairs: (student_id, team_id) pairs about to be written
        membership: team_id -> member student ids
    """
    for student_id, team_id in pairs:
        if student_id in membership.get(team_id, set()):
            raise SelfEvaluationError(student_id, team_id)


# =============================================================================
# Detection
# =============================================================================

async def find_self_evaluations(
    db: AsyncSession,
    assignment_id: Optional[int] = None
) -> SelfEvaluationReport:
    """
    Find stored evaluation records that violate the self-evaluation rule.

    Individual: the evaluator student is a member of the evaluated team.
    Team: the evaluator team is the evaluated team, or shares a member with it.

    Args:
        db: Database session
        assignment_id: Restrict the scan to one assignment (default: all)
    """
    individual_query = (
        select(
            EvaluationAssignment.id,
            EvaluationAssignment.assignment_id,
            EvaluationAssignment.evaluator_student_id,
            EvaluationAssignment.evaluated_team_id,
            EvaluationAssignment.submission_id,
        )
        .join(
            TeamMember,
            and_(
                TeamMember.team_id == EvaluationAssignment.evaluated_team_id,
                TeamMember.student_id == EvaluationAssignment.evaluator_student_id
            )
        )
        .order_by(EvaluationAssignment.id.asc())
    )
    if assignment_id is not None:
        individual_query = individual_query.where(EvaluationAssignment.assignment_id == assignment_id)

    result = await db.execute(individual_query)
    individual = [IndividualViolation(*row) for row in result.all()]

    evaluator_member = aliased(TeamMember)
    evaluated_member = aliased(TeamMember)
    shared_member = (
        select(evaluator_member.id)
        .join(
            evaluated_member,
            evaluated_member.student_id == evaluator_member.student_id
        )
        .where(
            evaluator_member.team_id == TeamEvaluation.evaluator_team_id,
            evaluated_member.team_id == TeamEvaluation.evaluated_team_id
        )
        .exists()
    )
    team_query = (
        select(
            TeamEvaluation.id,
            TeamEvaluation.assignment_id,
            TeamEvaluation.evaluator_team_id,
            TeamEvaluation.evaluated_team_id,
            TeamEvaluation.submission_id,
        )
        .where(
            or_(
                TeamEvaluation.evaluator_team_id == TeamEvaluation.evaluated_team_id,
                shared_member
            )
        )
        .order_by(TeamEvaluation.id.asc())
    )
    if assignment_id is not None:
        team_query = team_query.where(TeamEvaluation.assignment_id == assignment_id)

    result = await db.execute(team_query)
    team = [TeamViolation(*row) for row in result.all()]

    if individual or team:
        logger.warning(
            f"Found {len(individual)} individual and {len(team)} team self-evaluations"
            + (f" for assignment {assignment_id}" if assignment_id is not None else "")
        )

    return SelfEvaluationReport(individual=individual, team=team)


# =============================================================================
# Cleanup
# =============================================================================

async def cleanup_self_evaluations(
    db: AsyncSession,
    assignment_id: Optional[int] = None
) -> CleanupResult:
    """
    Delete every self-evaluation found by find_self_evaluations.

    Each table is deleted and committed separately; a failure on one table is
    reported in `errors` and does not prevent cleanup of the other.
    """
    report = await find_self_evaluations(db, assignment_id=assignment_id)
    cleanup = CleanupResult()

    if report.individual:
        ids = [v.id for v in report.individual]
        try:
            result = await db.execute(
                delete(EvaluationAssignment).where(EvaluationAssignment.id.in_(ids))
            )
            await db.commit()
            cleanup.deleted_individual = result.rowcount
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Failed to delete individual self-evaluations: {e}")
            cleanup.errors.append(f"Failed to delete individual self-evaluations: {e}")

    if report.team:
        ids = [v.id for v in report.team]
        try:
            result = await db.execute(
                delete(TeamEvaluation).where(TeamEvaluation.id.in_(ids))
            )
            await db.commit()
            cleanup.deleted_team = result.rowcount
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Failed to delete team self-evaluations: {e}")
            cleanup.errors.append(f"Failed to delete team self-evaluations: {e}")

    logger.info(
        f"Self-evaluation cleanup: deleted {cleanup.deleted_individual} individual, "
        f"{cleanup.deleted_team} team, {len(cleanup.errors)} errors"
    )
    return cleanup
