"""
Team Grade ORM Model

One row per (assignment, team), upserted by the grading engine on every
recomputation. The engine owns average_investment, tier, percentage,
total_investments, rank and submission_id. The review fields (status,
manual_override, original_*, published_at) belong to the instructor review
layer and are never written by the engine.
"""
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, Boolean, DateTime, Numeric, ForeignKey,
    Index, UniqueConstraint, Enum as SQLEnum
)

from peergrade.orm.base import BaseModel, enum_values


class GradeTier(str, PyEnum):
    HIGH = "high"
    MEDIAN = "median"
    LOW = "low"
    INCOMPLETE = "incomplete"


class GradeStatus(str, PyEnum):
    DRAFT = "draft"
    APPROVED = "approved"
    PUBLISHED = "published"


TIER_PERCENTAGES = {
    GradeTier.HIGH: 100,
    GradeTier.MEDIAN: 80,
    GradeTier.LOW: 60,
    GradeTier.INCOMPLETE: 0,
}

# Best first; used for monotonicity checks and reporting order
TIER_ORDER = [GradeTier.HIGH, GradeTier.MEDIAN, GradeTier.LOW, GradeTier.INCOMPLETE]


class Grade(BaseModel):
    __tablename__ = "grades"
    
    assignment_id = Column(
        Integer,
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False
    )
    team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False
    )
    submission_id = Column(
        Integer,
        ForeignKey("submissions.id", ondelete="SET NULL"),
        nullable=True
    )
    
    # Engine-owned fields
    average_investment = Column(Numeric(10, 4), nullable=False, default=Decimal("0"))
    tier = Column(
        SQLEnum(GradeTier, values_callable=enum_values, native_enum=False),
        nullable=False,
        default=GradeTier.INCOMPLETE
    )
    percentage = Column(Integer, nullable=False, default=0)
    total_investments = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=True)
    
    # Review layer fields
    status = Column(
        SQLEnum(GradeStatus, values_callable=enum_values, native_enum=False),
        nullable=False,
        default=GradeStatus.DRAFT
    )
    manual_override = Column(Boolean, nullable=False, default=False)
    original_tier = Column(
        SQLEnum(GradeTier, values_callable=enum_values, native_enum=False),
        nullable=True
    )
    original_percentage = Column(Integer, nullable=True)
    published_at = Column(DateTime, nullable=True)
    
    __table_args__ = (
        UniqueConstraint('assignment_id', 'team_id', name='uq_grade_assignment_team'),
        Index('idx_grade_assignment', 'assignment_id'),
    )
    
    def engine_snapshot(self) -> Dict[str, Any]:
        """Engine-owned values only (used to compare recomputations)."""
        return {
            "assignment_id": self.assignment_id,
            "team_id": self.team_id,
            "submission_id": self.submission_id,
            "average_investment": self.average_investment,
            "tier": self.tier,
            "percentage": self.percentage,
            "total_investments": self.total_investments,
            "rank": self.rank,
        }
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "team_id": self.team_id,
            "submission_id": self.submission_id,
            "average_investment": str(self.average_investment) if self.average_investment is not None else None,
            "tier": self.tier.value if self.tier else None,
            "percentage": self.percentage,
            "total_investments": self.total_investments,
            "rank": self.rank,
            "status": self.status.value if self.status else None,
            "manual_override": self.manual_override,
            "original_tier": self.original_tier.value if self.original_tier else None,
            "original_percentage": self.original_percentage,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
