"""
Roster & Submission Read Service

Read-only adapter over the course management tables. The engine never writes
roster, team or submission data; it only asks:
- which students are actively enrolled for an assignment's course
- which teams have a submitted submission for an assignment
- which students belong to each team

Every lookup structure built here lives for a single batch and is discarded
afterwards.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from peergrade.orm.course import Assignment, CourseEnrollment, EnrollmentStatus
from peergrade.orm.team import Team, TeamMember, Submission, SubmissionStatus
from peergrade.orm.user import User, UserRole

logger = logging.getLogger(__name__)


@dataclass
class SubmittedTeam:
    """A team with a submitted submission for one assignment."""
    team_id: int
    submission_id: int
    team_name: str = ""
    member_ids: Set[int] = field(default_factory=set)

    def has_member(self, student_id: int) -> bool:
        return student_id in self.member_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "submission_id": self.submission_id,
            "team_name": self.team_name,
            "member_ids": sorted(self.member_ids),
        }


async def get_assignment(assignment_id: int, db: AsyncSession) -> Optional[Assignment]:
    """Get assignment by ID."""
    result = await db.execute(
        select(Assignment).where(Assignment.id == assignment_id)
    )
    return result.scalar_one_or_none()


async def get_active_student_ids(course_id: int, db: AsyncSession) -> List[int]:
    """
    Active student enrollments for a course, sorted by user id.

    Inactive user accounts are excluded along with dropped enrollments.
    """
    result = await db.execute(
        select(CourseEnrollment.user_id)
        .join(User, User.id == CourseEnrollment.user_id)
        .where(
            CourseEnrollment.course_id == course_id,
            CourseEnrollment.role == UserRole.STUDENT,
            CourseEnrollment.status == EnrollmentStatus.ACTIVE,
            User.is_active == True
        )
        .order_by(CourseEnrollment.user_id.asc())
    )
    return [row[0] for row in result.all()]


async def get_submitted_teams(assignment_id: int, db: AsyncSession) -> List[SubmittedTeam]:
    """Teams with a submitted submission for the assignment, ordered by submission id."""
    result = await db.execute(
        select(Submission)
        .options(selectinload(Submission.team).selectinload(Team.members))
        .where(
            Submission.assignment_id == assignment_id,
            Submission.status == SubmissionStatus.SUBMITTED
        )
        .order_by(Submission.id.asc())
    )
    submissions = result.scalars().all()

    teams: List[SubmittedTeam] = []
    for submission in submissions:
        team = submission.team
        teams.append(SubmittedTeam(
            team_id=submission.team_id,
            submission_id=submission.id,
            team_name=team.name if team else "",
            member_ids=set(team.member_ids) if team else set(),
        ))
    logger.debug(f"Assignment {assignment_id}: {len(teams)} submitted teams")
    return teams


async def get_submitted_team(
    assignment_id: int,
    team_id: int,
    db: AsyncSession
) -> Optional[SubmittedTeam]:
    """The submitted submission of one team, or None if the team has not submitted."""
    result = await db.execute(
        select(Submission.id, Team.name)
        .join(Team, Team.id == Submission.team_id)
        .where(
            Submission.assignment_id == assignment_id,
            Submission.team_id == team_id,
            Submission.status == SubmissionStatus.SUBMITTED
        )
    )
    row = result.one_or_none()
    if row is None:
        return None

    return SubmittedTeam(
        team_id=team_id,
        submission_id=row[0],
        team_name=row[1],
        member_ids=await get_team_member_ids(team_id, db),
    )


async def get_team_member_ids(team_id: int, db: AsyncSession) -> Set[int]:
    """Member student ids of a team."""
    result = await db.execute(
        select(TeamMember.student_id).where(TeamMember.team_id == team_id)
    )
    return {row[0] for row in result.all()}


async def build_membership_index(
    team_ids: Set[int],
    db: AsyncSession
) -> Dict[int, Set[int]]:
    """team_id -> member student ids, for the given teams only."""
    index: Dict[int, Set[int]] = {team_id: set() for team_id in team_ids}
    if not team_ids:
        return index

    result = await db.execute(
        select(TeamMember.team_id, TeamMember.student_id)
        .where(TeamMember.team_id.in_(team_ids))
    )
    for team_id, student_id in result.all():
        index[team_id].add(student_id)
    return index
