"""
peergrade/orm/team.py
Teams, team membership and per-assignment submissions.

A team has one or two student members and at most one submission per
assignment. The member list is treated as immutable once the team has a
submission; the engine relies on that but does not enforce it.
"""
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, List

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey,
    UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from peergrade.orm.base import BaseModel, enum_values


class SubmissionStatus(str, PyEnum):
    DRAFT = "draft"
    SUBMITTED = "submitted"


class Team(BaseModel):
    __tablename__ = "teams"
    
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    
    members = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.id"
    )
    submissions = relationship("Submission", back_populates="team")
    
    @property
    def member_ids(self) -> List[int]:
        """Ordered member student ids."""
        return [m.student_id for m in self.members]
    
    def to_dict(self, include_members: bool = False) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "course_id": self.course_id,
            "name": self.name,
        }
        if include_members:
            result["members"] = self.member_ids
        return result


class TeamMember(BaseModel):
    __tablename__ = "team_members"
    
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    
    team = relationship("Team", back_populates="members")
    student = relationship("User", back_populates="team_memberships")
    
    __table_args__ = (
        UniqueConstraint('team_id', 'student_id', name='uq_team_member'),
        Index('idx_team_members_student', 'student_id'),
    )


class Submission(BaseModel):
    __tablename__ = "submissions"
    
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    status = Column(
        SQLEnum(SubmissionStatus, values_callable=enum_values, native_enum=False),
        nullable=False,
        default=SubmissionStatus.DRAFT
    )
    submitted_at = Column(DateTime, nullable=True, default=datetime.utcnow)
    
    assignment = relationship("Assignment", back_populates="submissions")
    team = relationship("Team", back_populates="submissions")
    
    __table_args__ = (
        UniqueConstraint('assignment_id', 'team_id', name='uq_submission_assignment_team'),
        Index('idx_submission_assignment_status', 'assignment_id', 'status'),
    )
