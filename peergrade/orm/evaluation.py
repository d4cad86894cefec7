"""
Peer Evaluation Assignment ORM Models

- EvaluationAssignment: one row per (assignment, evaluator student, evaluated team),
  created by the distributor and completed when the evaluator invests.
- TeamEvaluation: legacy team-level evaluation record (a team reviewing another
  team). Only the self-evaluation validator reads or deletes these.

Invariant for both: the evaluator must never be a member of the evaluated team.
"""
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, Boolean, DateTime, ForeignKey,
    Index, UniqueConstraint, Enum as SQLEnum, event
)
from sqlalchemy.orm import relationship

from peergrade.orm.base import BaseModel, enum_values


class EvaluationStatus(str, PyEnum):
    ASSIGNED = "assigned"
    COMPLETED = "completed"


class EvaluationAssignment(BaseModel):
    __tablename__ = "evaluation_assignments"
    
    assignment_id = Column(
        Integer,
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False
    )
    evaluator_student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    evaluated_team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False
    )
    submission_id = Column(
        Integer,
        ForeignKey("submissions.id", ondelete="SET NULL"),
        nullable=True
    )
    status = Column(
        SQLEnum(EvaluationStatus, values_callable=enum_values, native_enum=False),
        nullable=False,
        default=EvaluationStatus.ASSIGNED
    )
    assigned_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    due_at = Column(DateTime, nullable=False)
    
    evaluated_team = relationship("Team")
    
    __table_args__ = (
        UniqueConstraint(
            'assignment_id', 'evaluator_student_id', 'evaluated_team_id',
            name='uq_evaluation_evaluator_team'
        ),
        Index('idx_evaluation_assignment', 'assignment_id'),
        Index('idx_evaluation_evaluator', 'evaluator_student_id'),
    )
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "evaluator_student_id": self.evaluator_student_id,
            "evaluated_team_id": self.evaluated_team_id,
            "submission_id": self.submission_id,
            "status": self.status.value if self.status else None,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "due_at": self.due_at.isoformat() if self.due_at else None,
        }


class TeamEvaluation(BaseModel):
    __tablename__ = "team_evaluations"
    
    assignment_id = Column(
        Integer,
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False
    )
    evaluator_team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False
    )
    evaluated_team_id = Column(
        Integer,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False
    )
    submission_id = Column(
        Integer,
        ForeignKey("submissions.id", ondelete="SET NULL"),
        nullable=True
    )
    is_complete = Column(Boolean, nullable=False, default=False)
    
    __table_args__ = (
        Index('idx_team_evaluation_assignment', 'assignment_id'),
    )
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "evaluator_team_id": self.evaluator_team_id,
            "evaluated_team_id": self.evaluated_team_id,
            "submission_id": self.submission_id,
            "is_complete": self.is_complete,
        }


@event.listens_for(EvaluationAssignment, 'before_insert')
def validate_evaluation_before_insert(mapper, connection, target):
    """Validate evaluation assignment before insertion."""
    if target.due_at is None:
        raise ValueError("due_at is required")
    if target.status is None:
        target.status = EvaluationStatus.ASSIGNED
