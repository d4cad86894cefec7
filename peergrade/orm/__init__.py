from .base import Base

# Roster and submissions (read by the engine)
from .user import User, UserRole
from .course import Course, CourseEnrollment, EnrollmentStatus, Assignment
from .team import Team, TeamMember, Submission, SubmissionStatus

# Engine records
from .evaluation import EvaluationAssignment, EvaluationStatus, TeamEvaluation
from .investment import Investment, InvestmentBudget
from .grade import Grade, GradeTier, GradeStatus, TIER_PERCENTAGES, TIER_ORDER
from .interest import InterestRecord


__all__ = [
    "Base",
    "User",
    "UserRole",
    "Course",
    "CourseEnrollment",
    "EnrollmentStatus",
    "Assignment",
    "Team",
    "TeamMember",
    "Submission",
    "SubmissionStatus",
    "EvaluationAssignment",
    "EvaluationStatus",
    "TeamEvaluation",
    "Investment",
    "InvestmentBudget",
    "Grade",
    "GradeTier",
    "GradeStatus",
    "TIER_PERCENTAGES",
    "TIER_ORDER",
    "InterestRecord",
]
