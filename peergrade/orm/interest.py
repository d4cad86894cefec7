"""
Student Interest ORM Model

One row per (student, assignment, invested team). Rows are deleted and
re-inserted on every interest recomputation.
"""
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, Numeric, ForeignKey,
    Index, UniqueConstraint, Enum as SQLEnum
)

from peergrade.orm.base import BaseModel, enum_values
from peergrade.orm.grade import GradeTier


class InterestRecord(BaseModel):
    __tablename__ = "interest_records"
    
    student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    assignment_id = Column(
        Integer,
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False
    )
    invested_team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False
    )
    tokens_invested = Column(Integer, nullable=False)
    team_tier = Column(
        SQLEnum(GradeTier, values_callable=enum_values, native_enum=False),
        nullable=False
    )
    interest_rate = Column(Numeric(6, 4), nullable=False, default=Decimal("0"))
    interest_earned = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    
    __table_args__ = (
        UniqueConstraint(
            'student_id', 'assignment_id', 'invested_team_id',
            name='uq_interest_student_assignment_team'
        ),
        Index('idx_interest_student', 'student_id'),
        Index('idx_interest_assignment', 'assignment_id'),
    )
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "assignment_id": self.assignment_id,
            "invested_team_id": self.invested_team_id,
            "tokens_invested": self.tokens_invested,
            "team_tier": self.team_tier.value if self.team_tier else None,
            "interest_rate": str(self.interest_rate),
            "interest_earned": str(self.interest_earned),
        }
