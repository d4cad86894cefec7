"""
Grading Engine

Turns peer token investments into a team grade for one assignment.

Per submitted team:
1. Collect the investments made in the team, excluding any made by its own members
2. Reduce them with a trimmed mean (drop one min and one max when there are 3+)
3. Rank teams by that average and split the ranking into thirds:
   high (100%), median (80%), low (60%)

Teams without any investments (or with one flagged incomplete) are graded
incomplete (0%) and take no rank. A team that fails to score is skipped; if it
already has a grade row, that row is downgraded to incomplete. Grades are upserted: engine fields are
overwritten, instructor review fields are left untouched, so running the
engine twice with no new investments produces identical rows.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from peergrade.config.settings import settings, TieBreak
from peergrade.orm.base import QUANTIZER_4DP
from peergrade.orm.grade import Grade, GradeTier, TIER_PERCENTAGES, TIER_ORDER
from peergrade.orm.investment import Investment
from peergrade.services.locks import keyed_lock
from peergrade.services.roster_service import SubmittedTeam, get_assignment, get_submitted_teams

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# =============================================================================
# Custom Exceptions
# =============================================================================

class GradingError(Exception):
    """Base exception for grading errors."""
    def __init__(self, message: str, code: str = "INVALID_STATE"):
        self.message = message
        self.code = code
        super().__init__(message)


class GradingAssignmentNotFoundError(GradingError):
    """Raised when the assignment does not exist."""
    def __init__(self, assignment_id: int):
        super().__init__(f"Assignment {assignment_id} not found", "ASSIGNMENT_NOT_FOUND")


class NoSubmissionsError(GradingError):
    """Raised when no team has a submitted submission for the assignment."""
    def __init__(self, assignment_id: int):
        super().__init__(
            f"No submitted submissions found for assignment {assignment_id}",
            "NO_SUBMISSIONS"
        )


# =============================================================================
# Result Types
# =============================================================================

@dataclass
class TeamScore:
    """Reduced investment data for one team, before ranking."""
    team_id: int
    submission_id: Optional[int]
    average: Optional[Decimal]
    total_investments: int = 0
    flagged_incomplete: bool = False

    @property
    def is_incomplete(self) -> bool:
        return self.average is None or self.flagged_incomplete


@dataclass
class TeamGrade:
    team_id: int
    submission_id: Optional[int]
    average_investment: Decimal
    tier: GradeTier
    percentage: int
    total_investments: int
    rank: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "submission_id": self.submission_id,
            "average_investment": str(self.average_investment),
            "tier": self.tier.value,
            "percentage": self.percentage,
            "total_investments": self.total_investments,
            "rank": self.rank,
        }


@dataclass
class SkippedTeam:
    team_id: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"team_id": self.team_id, "reason": self.reason}


@dataclass
class GradingResult:
    assignment_id: int
    team_grades: List[TeamGrade] = field(default_factory=list)
    skipped: List[SkippedTeam] = field(default_factory=list)

    @property
    def statistics(self) -> Dict[str, Any]:
        tier_counts = {tier.value: 0 for tier in TIER_ORDER}
        for grade in self.team_grades:
            tier_counts[grade.tier.value] += 1

        ranked = [g.average_investment for g in self.team_grades if g.tier != GradeTier.INCOMPLETE]
        mean_average = (sum(ranked) / len(ranked)).quantize(QUANTIZER_4DP) if ranked else ZERO

        return {
            "total_teams": len(self.team_grades) + len(self.skipped),
            "graded_teams": len(self.team_grades),
            "ranked_teams": len(ranked),
            "skipped_teams": len(self.skipped),
            "tier_counts": tier_counts,
            "mean_average_investment": str(mean_average),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "team_grades": [g.to_dict() for g in self.team_grades],
            "statistics": self.statistics,
            "skipped": [s.to_dict() for s in self.skipped],
        }


# =============================================================================
# Pure Helpers
# =============================================================================

def trimmed_mean(values: Iterable[Union[int, Decimal]]) -> Optional[Decimal]:
    """
    Mean after dropping exactly one minimum and one maximum instance.

    Fewer than 3 values are averaged as-is. Returns None for no values.
    """
    ordered = sorted(Decimal(v) for v in values)
    if not ordered:
        return None
    if len(ordered) > 2:
        ordered = ordered[1:-1]
    return (sum(ordered) / len(ordered)).quantize(QUANTIZER_4DP, rounding=ROUND_HALF_UP)


def tier_for_rank(index: int, total: int) -> GradeTier:
    """
    Tier of the 0-based rank index among `total` ranked teams.

    The top ceil(n/3) are high, up to ceil(2n/3) median, the rest low.
    """
    high_cutoff = -(-total // 3)
    median_cutoff = -(-2 * total // 3)
    if index < high_cutoff:
        return GradeTier.HIGH
    if index < median_cutoff:
        return GradeTier.MEDIAN
    return GradeTier.LOW


def assign_tiers(
    team_scores: Sequence[TeamScore],
    tie_break: TieBreak = TieBreak.SUBMISSION_ID
) -> List[TeamGrade]:
    """
    Rank scored teams and assign tiers.

    Ranked teams are ordered by average descending; equal averages are ordered
    by the tie-break key ascending. Incomplete teams follow, ordered by team id.
    """
    def tie_key(score: TeamScore) -> int:
        if tie_break == TieBreak.TEAM_ID or score.submission_id is None:
            return score.team_id
        return score.submission_id

    ranked = sorted(
        (s for s in team_scores if not s.is_incomplete),
        key=lambda s: (-s.average, tie_key(s))
    )
    incomplete = sorted(
        (s for s in team_scores if s.is_incomplete),
        key=lambda s: s.team_id
    )

    grades: List[TeamGrade] = []
    for index, score in enumerate(ranked):
        tier = tier_for_rank(index, len(ranked))
        grades.append(TeamGrade(
            team_id=score.team_id,
            submission_id=score.submission_id,
            average_investment=score.average,
            tier=tier,
            percentage=TIER_PERCENTAGES[tier],
            total_investments=score.total_investments,
            rank=index + 1,
        ))

    for score in incomplete:
        grades.append(TeamGrade(
            team_id=score.team_id,
            submission_id=score.submission_id,
            average_investment=ZERO.quantize(QUANTIZER_4DP),
            tier=GradeTier.INCOMPLETE,
            percentage=TIER_PERCENTAGES[GradeTier.INCOMPLETE],
            total_investments=score.total_investments,
            rank=None,
        ))

    return grades


def score_team(team: SubmittedTeam, investments: Sequence[Investment]) -> TeamScore:
    """Reduce the investments placed in one team, ignoring its own members' investments."""
    counted = [i for i in investments if not team.has_member(i.investor_student_id)]

    for investment in counted:
        if investment.tokens is None or investment.tokens < 0:
            raise ValueError(
                f"Investment {investment.id} has invalid tokens: {investment.tokens}"
            )

    flagged = settings.INCOMPLETE_FLAG_FORCES_INCOMPLETE and any(i.is_incomplete for i in counted)

    return TeamScore(
        team_id=team.team_id,
        submission_id=team.submission_id,
        average=trimmed_mean(i.tokens for i in counted),
        total_investments=len(counted),
        flagged_incomplete=flagged,
    )


# =============================================================================
# Grading
# =============================================================================

async def grade_assignment(
    assignment_id: int,
    db: AsyncSession,
    tie_break: Optional[TieBreak] = None
) -> GradingResult:
    """
    Compute and upsert grades for every submitted team of an assignment.

    Raises:
        GradingAssignmentNotFoundError: Unknown assignment
        NoSubmissionsError: No team has submitted
    """
    tie_break = TieBreak(tie_break or settings.GRADE_TIE_BREAK)

    async with keyed_lock("assignment", assignment_id):
        assignment = await get_assignment(assignment_id, db)
        if not assignment:
            raise GradingAssignmentNotFoundError(assignment_id)

        teams = await get_submitted_teams(assignment_id, db)
        if not teams:
            raise NoSubmissionsError(assignment_id)

        logger.info(f"Grading assignment {assignment_id}: {len(teams)} submitted teams")

        result = await db.execute(
            select(Investment)
            .where(Investment.assignment_id == assignment_id)
            .order_by(Investment.id.asc())
        )
        by_team: Dict[int, List[Investment]] = {}
        for investment in result.scalars().all():
            by_team.setdefault(investment.invested_team_id, []).append(investment)

        scores: List[TeamScore] = []
        skipped: List[SkippedTeam] = []
        for team in teams:
            try:
                scores.append(score_team(team, by_team.get(team.team_id, [])))
            except Exception as e:
                logger.error(f"Skipping team {team.team_id} in assignment {assignment_id}: {e}")
                skipped.append(SkippedTeam(team_id=team.team_id, reason=str(e)))

        team_grades = assign_tiers(scores, tie_break)

        result = await db.execute(
            select(Grade).where(Grade.assignment_id == assignment_id)
        )
        existing = {grade.team_id: grade for grade in result.scalars().all()}

        for team_grade in team_grades:
            grade = existing.get(team_grade.team_id)
            if grade is None:
                grade = Grade(assignment_id=assignment_id, team_id=team_grade.team_id)
                db.add(grade)
            grade.submission_id = team_grade.submission_id
            grade.average_investment = team_grade.average_investment
            grade.tier = team_grade.tier
            grade.percentage = team_grade.percentage
            grade.total_investments = team_grade.total_investments
            grade.rank = team_grade.rank

        # A skipped team's previous tier no longer fits the new ranking
        for skip in skipped:
            grade = existing.get(skip.team_id)
            if grade is not None:
                grade.tier = GradeTier.INCOMPLETE
                grade.percentage = TIER_PERCENTAGES[GradeTier.INCOMPLETE]
                grade.rank = None

        await db.commit()

    grading = GradingResult(assignment_id=assignment_id, team_grades=team_grades, skipped=skipped)
    logger.info(
        f"Graded assignment {assignment_id}: {len(team_grades)} teams, "
        f"{len(skipped)} skipped, tiers={grading.statistics['tier_counts']}"
    )
    return grading


async def get_assignment_grades(assignment_id: int, db: AsyncSession) -> List[Grade]:
    """Stored grades for an assignment, best rank first, incomplete last."""
    result = await db.execute(
        select(Grade)
        .where(Grade.assignment_id == assignment_id)
        .order_by(Grade.rank.is_(None), Grade.rank.asc(), Grade.team_id.asc())
    )
    return list(result.scalars().all())
