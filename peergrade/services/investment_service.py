"""
Investment Ledger Write Path

Records one token investment by a student in a peer team. Every check and the
insert happen as one atomic step per (student, assignment):

    lock -> ensure budget row -> guarded budget update -> insert investment
         -> complete matching evaluation -> commit

The budget update only matches while the new totals stay within the limits,
so the database rejects an overspend even when requests from separate
worker processes race each other. The in-process lock only keeps requests
within one process from contending for the same row.

Budget rules:
- 0..MAX_TOKENS_PER_INVESTMENT tokens per investment
- at most MAX_TOKENS_PER_ASSIGNMENT tokens per student per assignment
- at most MAX_TEAMS_PER_INVESTOR distinct teams per student per assignment
- one investment per (assignment, investor, team); investments are immutable
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update, func, and_
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from peergrade.config.settings import settings
from peergrade.orm.evaluation import EvaluationAssignment, EvaluationStatus
from peergrade.orm.investment import Investment, InvestmentBudget
from peergrade.services.evaluation_distributor import to_naive_utc
from peergrade.services.evaluation_validator import ensure_not_self_evaluation
from peergrade.services.grading_engine import grade_assignment
from peergrade.services.locks import keyed_lock
from peergrade.services.roster_service import get_assignment, get_submitted_team

logger = logging.getLogger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class InvestmentError(Exception):
    """Base exception for investment errors."""
    def __init__(self, message: str, code: str = "INVALID_INPUT"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidTokensError(InvestmentError):
    """Raised when the token amount is outside the allowed range."""
    def __init__(self, tokens: Any):
        super().__init__(
            f"Tokens must be an integer between 0 and {settings.MAX_TOKENS_PER_INVESTMENT}, got {tokens}",
            "INVALID_INPUT"
        )


class InvestmentAssignmentNotFoundError(InvestmentError):
    """Raised when the assignment does not exist."""
    def __init__(self, assignment_id: int):
        super().__init__(f"Assignment {assignment_id} not found", "ASSIGNMENT_NOT_FOUND")


class EvaluationClosedError(InvestmentError):
    """Raised when the evaluation due date has passed."""
    def __init__(self, assignment_id: int):
        super().__init__(
            f"Evaluation period for assignment {assignment_id} has closed",
            "EVALUATION_CLOSED"
        )


class TeamNotSubmittedError(InvestmentError):
    """Raised when the team has no submitted submission for the assignment."""
    def __init__(self, team_id: int, assignment_id: int):
        super().__init__(
            f"Team {team_id} has no submitted submission for assignment {assignment_id}",
            "INVALID_INPUT"
        )


class DuplicateInvestmentError(InvestmentError):
    """Raised when the student already invested in the team."""
    def __init__(self, investor_id: int, team_id: int):
        super().__init__(
            f"Student {investor_id} has already invested in team {team_id}",
            "DUPLICATE_INVESTMENT"
        )


class BudgetExceededError(InvestmentError):
    """Raised when the investment would exceed the token or team budget."""
    def __init__(self, message: str):
        super().__init__(message, "BUDGET_EXCEEDED")


class NotAssignedError(InvestmentError):
    """Raised when the student was not assigned to evaluate the team."""
    def __init__(self, investor_id: int, team_id: int):
        super().__init__(
            f"Student {investor_id} is not assigned to evaluate team {team_id}",
            "NOT_ASSIGNED"
        )


# =============================================================================
# Budget
# =============================================================================

def validate_tokens(tokens: Any) -> int:
    """Return tokens if it is an integer in [0, MAX_TOKENS_PER_INVESTMENT]."""
    if isinstance(tokens, bool) or not isinstance(tokens, int):
        raise InvalidTokensError(tokens)
    if tokens < 0 or tokens > settings.MAX_TOKENS_PER_INVESTMENT:
        raise InvalidTokensError(tokens)
    return tokens


async def _ledger_totals(assignment_id: int, student_id: int, db: AsyncSession) -> Dict[str, int]:
    result = await db.execute(
        select(
            func.coalesce(func.sum(Investment.tokens), 0),
            func.count(Investment.id)
        )
        .where(
            and_(
                Investment.assignment_id == assignment_id,
                Investment.investor_student_id == student_id
            )
        )
    )
    tokens_used, teams_used = result.one()
    return {"tokens_used": int(tokens_used), "teams_used": int(teams_used)}


async def _get_budget(assignment_id: int, student_id: int, db: AsyncSession) -> InvestmentBudget:
    result = await db.execute(
        select(InvestmentBudget)
        .where(
            and_(
                InvestmentBudget.assignment_id == assignment_id,
                InvestmentBudget.student_id == student_id
            )
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _ensure_budget(assignment_id: int, student_id: int, db: AsyncSession) -> None:
    """
    Create the student's budget row if it does not exist yet.

    A new row is initialized from the ledger so that investments recorded
    before the budget row existed still count. Concurrent creators race on
    the unique (assignment, student) key; the losers insert nothing.
    """
    totals = await _ledger_totals(assignment_id, student_id, db)
    connection = await db.connection()
    insert = postgresql_insert if connection.dialect.name == "postgresql" else sqlite_insert

    now = datetime.utcnow()
    await db.execute(
        insert(InvestmentBudget)
        .values(
            assignment_id=assignment_id,
            student_id=student_id,
            tokens_used=totals["tokens_used"],
            teams_used=totals["teams_used"],
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["assignment_id", "student_id"])
    )


async def _reserve_budget(
    assignment_id: int,
    student_id: int,
    tokens: int,
    db: AsyncSession
) -> int:
    """
    Add tokens and one team to the budget row if both stay within limits.

    The limit check is part of the UPDATE itself, so the row is re-checked
    against committed totals by the database. Returns the new team count,
    which is the rank of the investment being recorded.

    Raises:
        BudgetExceededError: The update matched no row
    """
    result = await db.execute(
        update(InvestmentBudget)
        .where(
            and_(
                InvestmentBudget.assignment_id == assignment_id,
                InvestmentBudget.student_id == student_id,
                InvestmentBudget.teams_used + 1 <= settings.MAX_TEAMS_PER_INVESTOR,
                InvestmentBudget.tokens_used + tokens <= settings.MAX_TOKENS_PER_ASSIGNMENT
            )
        )
        .values(
            tokens_used=InvestmentBudget.tokens_used + tokens,
            teams_used=InvestmentBudget.teams_used + 1,
            updated_at=datetime.utcnow()
        )
        .execution_options(synchronize_session=False)
    )

    budget = await _get_budget(assignment_id, student_id, db)
    if result.rowcount == 1:
        return budget.teams_used

    if budget.teams_used + 1 > settings.MAX_TEAMS_PER_INVESTOR:
        raise BudgetExceededError(
            f"Student {student_id} has already invested in "
            f"{budget.teams_used} teams (max {settings.MAX_TEAMS_PER_INVESTOR})"
        )
    remaining = settings.MAX_TOKENS_PER_ASSIGNMENT - budget.tokens_used
    raise BudgetExceededError(
        f"Investing {tokens} tokens exceeds the budget: "
        f"{remaining} of {settings.MAX_TOKENS_PER_ASSIGNMENT} remaining"
    )


async def get_remaining_tokens(
    assignment_id: int,
    student_id: int,
    db: AsyncSession
) -> Dict[str, Any]:
    """Token and team budget for a student on an assignment."""
    totals = await _ledger_totals(assignment_id, student_id, db)
    return {
        "assignment_id": assignment_id,
        "student_id": student_id,
        "tokens_used": totals["tokens_used"],
        "tokens_remaining": max(settings.MAX_TOKENS_PER_ASSIGNMENT - totals["tokens_used"], 0),
        "max_tokens": settings.MAX_TOKENS_PER_ASSIGNMENT,
        "teams_used": totals["teams_used"],
        "teams_remaining": max(settings.MAX_TEAMS_PER_INVESTOR - totals["teams_used"], 0),
        "max_teams": settings.MAX_TEAMS_PER_INVESTOR,
    }


# =============================================================================
# Write Path
# =============================================================================

async def record_investment(
    assignment_id: int,
    investor_id: int,
    team_id: int,
    tokens: int,
    db: AsyncSession,
    comment: str = "",
    is_incomplete: bool = False,
    now: Optional[datetime] = None
) -> Investment:
    """
    Record an investment atomically.

    Raises:
        InvalidTokensError, InvestmentAssignmentNotFoundError, EvaluationClosedError,
        TeamNotSubmittedError, SelfEvaluationError, NotAssignedError,
        DuplicateInvestmentError, BudgetExceededError
    """
    validate_tokens(tokens)
    now = to_naive_utc(now or datetime.utcnow())

    async with keyed_lock("investment", (assignment_id, investor_id)):
        assignment = await get_assignment(assignment_id, db)
        if not assignment:
            raise InvestmentAssignmentNotFoundError(assignment_id)

        if assignment.evaluation_closed(now):
            raise EvaluationClosedError(assignment_id)

        team = await get_submitted_team(assignment_id, team_id, db)
        if team is None:
            raise TeamNotSubmittedError(team_id, assignment_id)

        await ensure_not_self_evaluation(investor_id, team_id, db)

        if settings.REQUIRE_EVALUATION_ASSIGNMENT:
            result = await db.execute(
                select(EvaluationAssignment.id).where(
                    and_(
                        EvaluationAssignment.assignment_id == assignment_id,
                        EvaluationAssignment.evaluator_student_id == investor_id,
                        EvaluationAssignment.evaluated_team_id == team_id
                    )
                )
            )
            if result.scalar_one_or_none() is None:
                raise NotAssignedError(investor_id, team_id)

        try:
            result = await db.execute(
                select(Investment.id).where(
                    and_(
                        Investment.assignment_id == assignment_id,
                        Investment.investor_student_id == investor_id,
                        Investment.invested_team_id == team_id
                    )
                )
            )
            if result.scalar_one_or_none() is not None:
                raise DuplicateInvestmentError(investor_id, team_id)

            await _ensure_budget(assignment_id, investor_id, db)
            rank = await _reserve_budget(assignment_id, investor_id, tokens, db)

            investment = Investment(
                assignment_id=assignment_id,
                investor_student_id=investor_id,
                invested_team_id=team_id,
                submission_id=team.submission_id,
                tokens=tokens,
                is_incomplete=is_incomplete,
                comment=comment or "",
                investment_rank=rank,
            )
            db.add(investment)

            await db.execute(
                update(EvaluationAssignment)
                .where(
                    and_(
                        EvaluationAssignment.assignment_id == assignment_id,
                        EvaluationAssignment.evaluator_student_id == investor_id,
                        EvaluationAssignment.evaluated_team_id == team_id,
                        EvaluationAssignment.status == EvaluationStatus.ASSIGNED
                    )
                )
                .values(status=EvaluationStatus.COMPLETED, completed_at=now)
            )

            await db.commit()
        except InvestmentError:
            await db.rollback()
            raise
        except IntegrityError as e:
            await db.rollback()
            # SQLite names the columns, PostgreSQL names the constraint
            if "uq_investment_investor_team" in str(e.orig) or "investments." in str(e.orig):
                raise DuplicateInvestmentError(investor_id, team_id)
            raise

    logger.info(
        f"Investment recorded: student={investor_id} team={team_id} "
        f"assignment={assignment_id} tokens={tokens}"
    )
    return investment


async def regrade_after_investment(assignment_id: int, db: AsyncSession) -> bool:
    """
    Recompute grades after a new investment.

    A regrade failure never invalidates the recorded investment; it is logged
    and False is returned.
    """
    try:
        await grade_assignment(assignment_id, db)
        return True
    except Exception:
        await db.rollback()
        logger.exception(f"Regrade after investment failed for assignment {assignment_id}")
        return False
