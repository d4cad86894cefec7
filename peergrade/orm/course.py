"""
peergrade/orm/course.py
Courses, enrollments and assignments.

These tables belong to the course management layer. The engine reads the
active student roster and the assignment's evaluation window from them, and
only writes the evaluation window/flag when distributing evaluations.
"""
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey,
    UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from peergrade.orm.base import BaseModel, enum_values
from peergrade.orm.user import UserRole


class EnrollmentStatus(str, PyEnum):
    ACTIVE = "active"
    DROPPED = "dropped"


class Course(BaseModel):
    __tablename__ = "courses"
    
    code = Column(String(50), unique=True, nullable=False)
    title = Column(String(255), nullable=False)
    
    enrollments = relationship("CourseEnrollment", back_populates="course", cascade="all, delete-orphan")
    assignments = relationship("Assignment", back_populates="course", cascade="all, delete-orphan")


class CourseEnrollment(BaseModel):
    __tablename__ = "course_enrollments"
    
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(
        SQLEnum(UserRole, values_callable=enum_values, native_enum=False),
        nullable=False,
        default=UserRole.STUDENT
    )
    status = Column(
        SQLEnum(EnrollmentStatus, values_callable=enum_values, native_enum=False),
        nullable=False,
        default=EnrollmentStatus.ACTIVE
    )
    
    course = relationship("Course", back_populates="enrollments")
    user = relationship("User", back_populates="enrollments")
    
    __table_args__ = (
        UniqueConstraint('course_id', 'user_id', name='uq_enrollment_course_user'),
        Index('idx_enrollment_course', 'course_id'),
    )


class Assignment(BaseModel):
    __tablename__ = "assignments"
    
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    due_date = Column(DateTime, nullable=True)
    
    # Evaluation window, set when evaluations are distributed
    evaluation_start_date = Column(DateTime, nullable=True)
    evaluation_due_date = Column(DateTime, nullable=True)
    is_evaluation_active = Column(Boolean, nullable=False, default=False)
    
    course = relationship("Course", back_populates="assignments")
    submissions = relationship("Submission", back_populates="assignment")
    
    def evaluation_closed(self, now: datetime) -> bool:
        """True once the evaluation due date has passed."""
        return self.evaluation_due_date is not None and now > self.evaluation_due_date
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "evaluation_start_date": self.evaluation_start_date.isoformat() if self.evaluation_start_date else None,
            "evaluation_due_date": self.evaluation_due_date.isoformat() if self.evaluation_due_date else None,
            "is_evaluation_active": self.is_evaluation_active,
        }
