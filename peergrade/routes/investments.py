"""
Investment API Routes

Students invest tokens in peer teams. Each accepted investment triggers a
regrade of the assignment when AUTO_REGRADE_ON_INVESTMENT is on.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from peergrade.config.settings import settings
from peergrade.database import get_db
from peergrade.errors import from_service_error
from peergrade.rate_limit import limiter
from peergrade.schemas.investment import InvestmentCreate, InvestmentResponse, TokenBudgetResponse
from peergrade.services.evaluation_validator import SelfEvaluationError
from peergrade.services.investment_service import (
    record_investment, regrade_after_investment, get_remaining_tokens, InvestmentError
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/investments", tags=["Investments"])


@router.post("", response_model=InvestmentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.INVESTMENT_RATE_LIMIT)
async def create_investment(
    request: Request,
    payload: InvestmentCreate,
    db: AsyncSession = Depends(get_db)
) -> InvestmentResponse:
    """
    Invest tokens in a peer team.

    Rules:
    - 0 to 50 tokens per investment, 100 per assignment, 3 teams per assignment
    - never in the investor's own team
    - one investment per team
    """
    try:
        investment = await record_investment(
            assignment_id=payload.assignment_id,
            investor_id=payload.investor_id,
            team_id=payload.team_id,
            tokens=payload.tokens,
            db=db,
            comment=payload.comment,
            is_incomplete=payload.is_incomplete
        )
    except (InvestmentError, SelfEvaluationError) as e:
        raise from_service_error(e)

    response = InvestmentResponse.model_validate(investment)
    if settings.AUTO_REGRADE_ON_INVESTMENT:
        response.regraded = await regrade_after_investment(payload.assignment_id, db)
        if not response.regraded:
            logger.warning(f"Investment {response.id} recorded but grades were not refreshed")

    return response


@router.get("/tokens", response_model=TokenBudgetResponse)
async def remaining_tokens(
    assignment_id: int = Query(...),
    student_id: int = Query(...),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Token and team budget left for a student on an assignment."""
    return await get_remaining_tokens(assignment_id, student_id, db)
