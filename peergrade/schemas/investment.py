"""
peergrade/schemas/investment.py
Pydantic schemas for investment endpoints
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class InvestmentCreate(BaseModel):
    """Request to invest tokens in a peer team"""
    assignment_id: int
    investor_id: int
    team_id: int
    tokens: int = Field(..., description="Tokens to invest (0-50)")
    comment: str = Field(default="", max_length=2000)
    is_incomplete: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "assignment_id": 1,
                "investor_id": 12,
                "team_id": 4,
                "tokens": 40,
                "comment": "Clear structure, strong analysis",
                "is_incomplete": False,
            }
        }


class InvestmentResponse(BaseModel):
    """Response schema for a recorded investment"""
    id: int
    assignment_id: int
    investor_student_id: int
    invested_team_id: int
    submission_id: Optional[int] = None
    tokens: int
    is_incomplete: bool
    comment: str
    investment_rank: int
    created_at: Optional[datetime] = None
    regraded: bool = False

    class Config:
        from_attributes = True


class TokenBudgetResponse(BaseModel):
    assignment_id: int
    student_id: int
    tokens_used: int
    tokens_remaining: int
    max_tokens: int
    teams_used: int
    teams_remaining: int
    max_teams: int
