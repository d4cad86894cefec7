"""
Investment Ledger ORM Models

- Investment: tokens a student places on a peer team for one assignment.
  Created once per (assignment, investor, team) and never edited by the engine.
- InvestmentBudget: per (assignment, student) running totals. This row is the
  lock target that makes the budget check and the insert a single atomic step.
"""
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, Boolean, String, ForeignKey,
    Index, UniqueConstraint, CheckConstraint, event
)
from sqlalchemy.orm import relationship

from peergrade.orm.base import BaseModel


class Investment(BaseModel):
    __tablename__ = "investments"
    
    assignment_id = Column(
        Integer,
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False
    )
    investor_student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    invested_team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False
    )
    submission_id = Column(
        Integer,
        ForeignKey("submissions.id", ondelete="SET NULL"),
        nullable=True
    )
    tokens = Column(Integer, nullable=False)
    is_incomplete = Column(Boolean, nullable=False, default=False)
    comment = Column(String(2000), nullable=False, default="")
    investment_rank = Column(Integer, nullable=False, default=1)
    
    invested_team = relationship("Team")
    
    __table_args__ = (
        UniqueConstraint(
            'assignment_id', 'investor_student_id', 'invested_team_id',
            name='uq_investment_investor_team'
        ),
        CheckConstraint('tokens >= 0', name='ck_investment_tokens_non_negative'),
        Index('idx_investment_assignment_team', 'assignment_id', 'invested_team_id'),
        Index('idx_investment_investor', 'assignment_id', 'investor_student_id'),
    )
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "investor_student_id": self.investor_student_id,
            "invested_team_id": self.invested_team_id,
            "submission_id": self.submission_id,
            "tokens": self.tokens,
            "is_incomplete": self.is_incomplete,
            "comment": self.comment,
            "investment_rank": self.investment_rank,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class InvestmentBudget(BaseModel):
    __tablename__ = "investment_budgets"
    
    assignment_id = Column(
        Integer,
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False
    )
    student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    tokens_used = Column(Integer, nullable=False, default=0)
    teams_used = Column(Integer, nullable=False, default=0)
    
    __table_args__ = (
        UniqueConstraint('assignment_id', 'student_id', name='uq_budget_assignment_student'),
    )
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "student_id": self.student_id,
            "tokens_used": self.tokens_used,
            "teams_used": self.teams_used,
        }


@event.listens_for(Investment, 'before_insert')
def validate_investment_before_insert(mapper, connection, target):
    """Validate investment data before insertion."""
    if target.tokens is None or target.tokens < 0:
        raise ValueError("tokens must be a non-negative integer")
    if target.comment is None:
        target.comment = ""
