"""
Interest Calculator

Students earn interest on the tokens they invested, at a rate set by the tier
the invested team was graded into:

    high 20%, median 10%, low 5%, incomplete 0%

A team without a grade counts as incomplete. Interest rows are replaced on
every run (delete then insert per student), so recomputation is idempotent.
Reported interest is raw; any capping is applied downstream.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from peergrade.config.settings import settings
from peergrade.orm.base import QUANTIZER_2DP
from peergrade.orm.grade import Grade, GradeTier
from peergrade.orm.interest import InterestRecord
from peergrade.orm.investment import Investment
from peergrade.services.locks import keyed_lock
from peergrade.services.roster_service import get_active_student_ids, get_assignment

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# =============================================================================
# Custom Exceptions
# =============================================================================

class InterestError(Exception):
    """Base exception for interest calculation errors."""
    def __init__(self, message: str, code: str = "INVALID_STATE"):
        self.message = message
        self.code = code
        super().__init__(message)


class InterestAssignmentNotFoundError(InterestError):
    """Raised when the assignment does not exist."""
    def __init__(self, assignment_id: int):
        super().__init__(f"Assignment {assignment_id} not found", "ASSIGNMENT_NOT_FOUND")


class GradesNotReadyError(InterestError):
    """Raised when interest is requested before the assignment is graded."""
    def __init__(self, assignment_id: int):
        super().__init__(
            f"Assignment {assignment_id} has no grades yet; run grading first",
            "GRADES_NOT_READY"
        )


# =============================================================================
# Result Types
# =============================================================================

@dataclass
class StudentInterest:
    student_id: int
    total_interest: Decimal = ZERO
    records: List[InterestRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "total_interest": str(self.total_interest),
            "investments": len(self.records),
        }


@dataclass
class SkippedStudent:
    student_id: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"student_id": self.student_id, "reason": self.reason}


@dataclass
class InterestBatchResult:
    assignment_id: int
    student_interests: List[StudentInterest] = field(default_factory=list)
    skipped: List[SkippedStudent] = field(default_factory=list)

    @property
    def total_interest(self) -> Decimal:
        return sum((s.total_interest for s in self.student_interests), ZERO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "student_interests": [s.to_dict() for s in self.student_interests],
            "skipped": [s.to_dict() for s in self.skipped],
            "total_interest": str(self.total_interest),
        }


# =============================================================================
# Pure Helpers
# =============================================================================

def interest_for(
    tokens: int,
    tier: Union[GradeTier, str],
    rates: Optional[Mapping[str, Decimal]] = None
) -> Decimal:
    """Interest earned on `tokens` invested in a team of the given tier."""
    rates = rates or settings.interest_rates()
    tier_key = tier.value if isinstance(tier, GradeTier) else str(tier)
    if tier_key not in rates:
        raise ValueError(f"Unknown grade tier: {tier}")
    return (Decimal(tokens) * Decimal(rates[tier_key])).quantize(QUANTIZER_2DP, rounding=ROUND_HALF_UP)


def build_interest_records(
    student_id: int,
    assignment_id: int,
    investments: Sequence[Investment],
    team_tiers: Mapping[int, GradeTier],
    rates: Optional[Mapping[str, Decimal]] = None
) -> StudentInterest:
    """One unsaved InterestRecord per investment, plus the student's total."""
    rates = rates or settings.interest_rates()
    summary = StudentInterest(student_id=student_id)

    for investment in investments:
        if investment.tokens is None or investment.tokens < 0:
            raise ValueError(f"Investment {investment.id} has invalid tokens: {investment.tokens}")

        tier = team_tiers.get(investment.invested_team_id, GradeTier.INCOMPLETE)
        earned = interest_for(investment.tokens, tier, rates)
        summary.records.append(InterestRecord(
            student_id=student_id,
            assignment_id=assignment_id,
            invested_team_id=investment.invested_team_id,
            tokens_invested=investment.tokens,
            team_tier=tier,
            interest_rate=Decimal(rates[tier.value]),
            interest_earned=earned,
        ))
        summary.total_interest += earned

    return summary


# =============================================================================
# Data Access
# =============================================================================

async def _get_team_tiers(assignment_id: int, db: AsyncSession) -> Dict[int, GradeTier]:
    result = await db.execute(
        select(Grade.team_id, Grade.tier).where(Grade.assignment_id == assignment_id)
    )
    return {team_id: tier for team_id, tier in result.all()}


async def _get_investments(
    assignment_id: int,
    db: AsyncSession,
    student_id: Optional[int] = None
) -> List[Investment]:
    query = select(Investment).where(Investment.assignment_id == assignment_id)
    if student_id is not None:
        query = query.where(Investment.investor_student_id == student_id)
    result = await db.execute(query.order_by(Investment.id.asc()))
    return list(result.scalars().all())


async def _replace_interest(
    assignment_id: int,
    summaries: Sequence[StudentInterest],
    db: AsyncSession
) -> None:
    """Delete the students' existing rows for the assignment and insert the new ones."""
    student_ids = [s.student_id for s in summaries]
    if not student_ids:
        return
    await db.execute(
        delete(InterestRecord).where(
            and_(
                InterestRecord.assignment_id == assignment_id,
                InterestRecord.student_id.in_(student_ids)
            )
        )
    )
    for summary in summaries:
        db.add_all(summary.records)


# =============================================================================
# Calculation
# =============================================================================

async def calculate_student_interest(
    student_id: int,
    assignment_id: int,
    db: AsyncSession
) -> Decimal:
    """
    Recompute one student's interest for an assignment.

    Returns the student's total interest.
    """
    async with keyed_lock("assignment", assignment_id):
        team_tiers = await _get_team_tiers(assignment_id, db)
        investments = await _get_investments(assignment_id, db, student_id=student_id)

        summary = build_interest_records(student_id, assignment_id, investments, team_tiers)
        await _replace_interest(assignment_id, [summary], db)
        await db.commit()

    logger.info(
        f"Interest for student {student_id} on assignment {assignment_id}: "
        f"{summary.total_interest} ({len(summary.records)} investments)"
    )
    return summary.total_interest


async def calculate_assignment_interest(assignment_id: int, db: AsyncSession) -> InterestBatchResult:
    """
    Recompute interest for every active student enrolled in the assignment's course.

    Raises:
        InterestAssignmentNotFoundError: Unknown assignment
        GradesNotReadyError: The assignment has not been graded
    """
    batch = InterestBatchResult(assignment_id=assignment_id)

    async with keyed_lock("assignment", assignment_id):
        assignment = await get_assignment(assignment_id, db)
        if not assignment:
            raise InterestAssignmentNotFoundError(assignment_id)

        team_tiers = await _get_team_tiers(assignment_id, db)
        if not team_tiers:
            raise GradesNotReadyError(assignment_id)

        student_ids = await get_active_student_ids(assignment.course_id, db)
        logger.info(f"Calculating interest for assignment {assignment_id}: {len(student_ids)} students")

        by_student: Dict[int, List[Investment]] = {}
        for investment in await _get_investments(assignment_id, db):
            by_student.setdefault(investment.investor_student_id, []).append(investment)

        rates = settings.interest_rates()
        for student_id in student_ids:
            try:
                batch.student_interests.append(build_interest_records(
                    student_id, assignment_id, by_student.get(student_id, []), team_tiers, rates
                ))
            except Exception as e:
                logger.error(f"Skipping interest for student {student_id}: {e}")
                batch.skipped.append(SkippedStudent(student_id=student_id, reason=str(e)))

        await _replace_interest(assignment_id, batch.student_interests, db)
        await db.commit()

    logger.info(
        f"Interest calculated for assignment {assignment_id}: "
        f"{len(batch.student_interests)} students, {len(batch.skipped)} skipped, "
        f"total={batch.total_interest}"
    )
    return batch


async def get_student_interest_summary(student_id: int, db: AsyncSession) -> Dict[str, Any]:
    """Stored interest for a student, totalled per assignment."""
    result = await db.execute(
        select(InterestRecord)
        .where(InterestRecord.student_id == student_id)
        .order_by(InterestRecord.assignment_id.asc(), InterestRecord.invested_team_id.asc())
    )
    records = result.scalars().all()

    assignments: Dict[int, Dict[str, Any]] = {}
    total = ZERO
    for record in records:
        entry = assignments.setdefault(record.assignment_id, {
            "assignment_id": record.assignment_id,
            "tokens_invested": 0,
            "total_interest": ZERO,
            "records": [],
        })
        earned = Decimal(record.interest_earned).quantize(QUANTIZER_2DP)
        entry["tokens_invested"] += record.tokens_invested
        entry["total_interest"] += earned
        entry["records"].append(record.to_dict())
        total += earned

    return {
        "student_id": student_id,
        "total_interest": str(total),
        "assignments": [
            {**entry, "total_interest": str(entry["total_interest"])}
            for entry in assignments.values()
        ],
    }
