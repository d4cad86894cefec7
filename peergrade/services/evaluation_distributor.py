"""
Evaluation Distributor

Assigns every actively enrolled student a set of peer teams to evaluate for an
assignment:
- never a team the student belongs to
- k distinct teams per student where the candidate pool allows it
- load-balanced: each pick goes to the currently least-evaluated candidate
- deterministic: ties are broken by submission id, or by a seeded shuffle

A student whose candidate pool is smaller than k receives the whole pool and a
DistributionWarning is reported instead of failing the batch.
"""
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy import select, delete, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from peergrade.config.settings import settings
from peergrade.orm.evaluation import EvaluationAssignment, EvaluationStatus
from peergrade.services.evaluation_validator import (
    CleanupResult, assert_no_self_targets, cleanup_self_evaluations
)
from peergrade.services.roster_service import (
    SubmittedTeam, build_membership_index, get_active_student_ids,
    get_assignment, get_submitted_teams
)

logger = logging.getLogger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class DistributionError(Exception):
    """Base exception for distribution errors."""
    code = "INVALID_INPUT"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class DistributionValidationError(DistributionError):
    """Raised when distribution parameters or preconditions are invalid."""
    code = "INVALID_INPUT"


class AssignmentNotFoundError(DistributionError):
    """Raised when the assignment does not exist."""
    code = "ASSIGNMENT_NOT_FOUND"

    def __init__(self, assignment_id: int):
        self.assignment_id = assignment_id
        super().__init__(f"Assignment {assignment_id} not found")


class AlreadyDistributedError(DistributionError):
    """Raised when evaluations already exist and force was not requested."""
    code = "ALREADY_DISTRIBUTED"

    def __init__(self, assignment_id: int):
        self.assignment_id = assignment_id
        super().__init__(
            f"Evaluations for assignment {assignment_id} are already distributed"
        )


# =============================================================================
# Result Types
# =============================================================================

@dataclass
class DistributionWarning:
    """A student who received fewer evaluations than requested."""
    student_id: int
    requested: int
    assigned: int

    @property
    def message(self) -> str:
        return (
            f"Student {self.student_id} received {self.assigned} of "
            f"{self.requested} requested evaluations"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "requested": self.requested,
            "assigned": self.assigned,
            "message": self.message,
        }


@dataclass
class DistributionResult:
    evaluations: List[EvaluationAssignment] = field(default_factory=list)
    warnings: List[DistributionWarning] = field(default_factory=list)
    cleanup: CleanupResult = field(default_factory=CleanupResult)
    evaluations_per_student: int = 0

    @property
    def count(self) -> int:
        return len(self.evaluations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "evaluations_per_student": self.evaluations_per_student,
            "warnings": [w.to_dict() for w in self.warnings],
            "cleanup": self.cleanup.to_dict(),
        }


# =============================================================================
# Validation
# =============================================================================

def to_naive_utc(value: datetime) -> datetime:
    """Normalize aware datetimes to naive UTC (the storage convention)."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def validate_distribution_request(
    evaluations_per_student: int,
    start_at: datetime,
    due_at: datetime,
    now: datetime
) -> None:
    """Raise DistributionValidationError if the request itself is invalid."""
    max_k = settings.MAX_EVALUATIONS_PER_STUDENT
    if isinstance(evaluations_per_student, bool) or not isinstance(evaluations_per_student, int):
        raise DistributionValidationError("evaluations_per_student must be an integer")
    if evaluations_per_student < 1 or evaluations_per_student > max_k:
        raise DistributionValidationError(
            f"evaluations_per_student must be between 1 and {max_k}"
        )
    if start_at >= due_at:
        raise DistributionValidationError("Evaluation start must be before the due date")
    if due_at <= now:
        raise DistributionValidationError("Evaluation due date must be in the future")
    horizon = now + timedelta(days=settings.EVALUATION_HORIZON_DAYS)
    if due_at > horizon:
        raise DistributionValidationError(
            f"Evaluation due date cannot be more than {settings.EVALUATION_HORIZON_DAYS} days ahead"
        )


# =============================================================================
# Planning (pure)
# =============================================================================

def plan_distribution(
    student_ids: Sequence[int],
    teams: Sequence[SubmittedTeam],
    evaluations_per_student: int,
    seed: Optional[int] = None,
    existing: Optional[Mapping[int, Set[int]]] = None
) -> Tuple[Dict[int, List[SubmittedTeam]], List[DistributionWarning]]:
    """
    Choose evaluation targets for each student.

    Args:
        student_ids: Evaluators, processed in the given order
        teams: Submitted teams, ordered by submission id
        evaluations_per_student: Requested targets per student (k)
        seed: Shuffle seed for tie-breaking between equally loaded teams
        existing: student_id -> team ids already held (kept completed evaluations)

    Returns:
        (student_id -> new targets, warnings)
    """
    existing = existing or {}

    order = list(teams)
    if seed is not None:
        random.Random(seed).shuffle(order)
    position = {team.team_id: index for index, team in enumerate(order)}

    load: Dict[int, int] = {team.team_id: 0 for team in order}
    for held in existing.values():
        for team_id in held:
            if team_id in load:
                load[team_id] += 1

    plan: Dict[int, List[SubmittedTeam]] = {}
    warnings: List[DistributionWarning] = []

    for student_id in student_ids:
        held = existing.get(student_id, set())
        needed = evaluations_per_student - len(held)
        if needed <= 0:
            continue

        pool = [
            team for team in order
            if not team.has_member(student_id) and team.team_id not in held
        ]
        pool.sort(key=lambda team: (load[team.team_id], position[team.team_id]))

        chosen = pool[:needed]
        for team in chosen:
            load[team.team_id] += 1
        plan[student_id] = chosen

        if len(chosen) < needed:
            warnings.append(DistributionWarning(
                student_id=student_id,
                requested=evaluations_per_student,
                assigned=len(held) + len(chosen),
            ))

    return plan, warnings


# =============================================================================
# Distribution
# =============================================================================

async def is_assignment_distributed(assignment_id: int, db: AsyncSession) -> bool:
    """True if any evaluation assignment exists for the assignment."""
    result = await db.execute(
        select(func.count(EvaluationAssignment.id))
        .where(EvaluationAssignment.assignment_id == assignment_id)
    )
    return (result.scalar() or 0) > 0


async def _get_completed_targets(assignment_id: int, db: AsyncSession) -> Dict[int, Set[int]]:
    result = await db.execute(
        select(
            EvaluationAssignment.evaluator_student_id,
            EvaluationAssignment.evaluated_team_id
        )
        .where(
            and_(
                EvaluationAssignment.assignment_id == assignment_id,
                EvaluationAssignment.status == EvaluationStatus.COMPLETED
            )
        )
    )
    targets: Dict[int, Set[int]] = {}
    for student_id, team_id in result.all():
        targets.setdefault(student_id, set()).add(team_id)
    return targets


async def distribute_evaluations(
    assignment_id: int,
    evaluations_per_student: int,
    start_at: datetime,
    due_at: datetime,
    db: AsyncSession,
    now: Optional[datetime] = None,
    force: bool = False,
    seed: Optional[int] = None
) -> DistributionResult:
    """
    Distribute peer evaluations for an assignment.

    Steps:
    1. Validate the request and the assignment's preconditions
    2. Clean up stored self-evaluations
    3. Replace pending evaluations when force=True (completed ones are kept)
    4. Plan and insert evaluation assignments
    5. Open the assignment's evaluation window and commit

    Raises:
        DistributionValidationError: Invalid parameters, too few submitted teams
            or no active students
        AssignmentNotFoundError: Unknown assignment
        AlreadyDistributedError: Evaluations exist and force is False
        SelfEvaluationError: A planned row would target the evaluator's own team
    """
    now = to_naive_utc(now or datetime.utcnow())
    start_at = to_naive_utc(start_at)
    due_at = to_naive_utc(due_at)

    validate_distribution_request(evaluations_per_student, start_at, due_at, now)

    assignment = await get_assignment(assignment_id, db)
    if not assignment:
        raise AssignmentNotFoundError(assignment_id)

    if not force and await is_assignment_distributed(assignment_id, db):
        raise AlreadyDistributedError(assignment_id)

    teams = await get_submitted_teams(assignment_id, db)
    if len(teams) < evaluations_per_student + 1:
        raise DistributionValidationError(
            f"Need at least {evaluations_per_student + 1} submitted teams to assign "
            f"{evaluations_per_student} evaluations per student, found {len(teams)}"
        )

    student_ids = await get_active_student_ids(assignment.course_id, db)
    if not student_ids:
        raise DistributionValidationError("No active students are enrolled in the course")

    logger.info(
        f"Distributing {evaluations_per_student} evaluations per student for assignment "
        f"{assignment_id}: {len(student_ids)} students, {len(teams)} submitted teams"
    )

    cleanup = await cleanup_self_evaluations(db, assignment_id=assignment_id)

    existing: Dict[int, Set[int]] = {}
    if force:
        await db.execute(
            delete(EvaluationAssignment).where(
                and_(
                    EvaluationAssignment.assignment_id == assignment_id,
                    EvaluationAssignment.status == EvaluationStatus.ASSIGNED
                )
            )
        )
        existing = await _get_completed_targets(assignment_id, db)

    plan, warnings = plan_distribution(
        student_ids, teams, evaluations_per_student, seed=seed, existing=existing
    )

    membership = await build_membership_index({team.team_id for team in teams}, db)
    assert_no_self_targets(
        ((student_id, team.team_id) for student_id, targets in plan.items() for team in targets),
        membership
    )

    evaluations: List[EvaluationAssignment] = []
    for student_id, targets in plan.items():
        for team in targets:
            evaluation = EvaluationAssignment(
                assignment_id=assignment_id,
                evaluator_student_id=student_id,
                evaluated_team_id=team.team_id,
                submission_id=team.submission_id,
                status=EvaluationStatus.ASSIGNED,
                assigned_at=now,
                due_at=due_at,
            )
            db.add(evaluation)
            evaluations.append(evaluation)

    assignment.evaluation_start_date = start_at
    assignment.evaluation_due_date = due_at
    assignment.is_evaluation_active = True

    await db.commit()

    for warning in warnings:
        logger.warning(f"[DISTRIBUTION] {warning.message}")
    logger.info(
        f"Distributed {len(evaluations)} evaluations for assignment {assignment_id} "
        f"({len(warnings)} warnings)"
    )

    return DistributionResult(
        evaluations=evaluations,
        warnings=warnings,
        cleanup=cleanup,
        evaluations_per_student=evaluations_per_student,
    )


async def get_student_evaluations(
    assignment_id: int,
    student_id: int,
    db: AsyncSession
) -> List[EvaluationAssignment]:
    """Evaluation assignments held by a student, ordered by id."""
    result = await db.execute(
        select(EvaluationAssignment)
        .where(
            and_(
                EvaluationAssignment.assignment_id == assignment_id,
                EvaluationAssignment.evaluator_student_id == student_id
            )
        )
        .order_by(EvaluationAssignment.id.asc())
    )
    return list(result.scalars().all())
