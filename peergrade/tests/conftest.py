"""
Shared fixtures: a fresh SQLite database per test, a roster builder and an
HTTP client wired to the app with the test database.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncGenerator, Dict, List, Optional, Sequence

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from peergrade.database import get_db
from peergrade.orm import (
    Base, User, UserRole, Course, CourseEnrollment, EnrollmentStatus, Assignment,
    Team, TeamMember, Submission, SubmissionStatus, Investment
)
from peergrade.services import locks


@pytest.fixture(autouse=True)
def reset_locks():
    """Locks bind to the event loop that first waits on them; start each test clean."""
    locks._locks.clear()
    yield
    locks._locks.clear()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Create a test database engine on a per-test SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'peergrade_test.db'}",
        poolclass=NullPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database override."""
    from peergrade.main import app
    from peergrade.rate_limit import limiter

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# =============================================================================
# Roster
# =============================================================================

class RosterBuilder:
    """Creates course, roster and submission rows the way the course layer would."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._users = 0
        self._courses = 0

    async def _save(self, *objects):
        self.db.add_all(objects)
        await self.db.commit()
        return objects[0] if len(objects) == 1 else objects

    async def course(self, code: Optional[str] = None) -> Course:
        self._courses += 1
        code = code or f"PEER{100 + self._courses}"
        return await self._save(Course(code=code, title=f"Course {code}"))

    async def student(
        self,
        course: Optional[Course] = None,
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
        is_active: bool = True
    ) -> User:
        self._users += 1
        user = User(
            email=f"student{self._users}@example.edu",
            full_name=f"Student {self._users}",
            role=UserRole.STUDENT,
            is_active=is_active
        )
        self.db.add(user)
        await self.db.flush()
        if course is not None:
            self.db.add(CourseEnrollment(
                course_id=course.id,
                user_id=user.id,
                role=UserRole.STUDENT,
                status=status
            ))
        await self.db.commit()
        return user

    async def team(self, course: Course, members: Sequence[User], name: Optional[str] = None) -> Team:
        team = Team(course_id=course.id, name=name or f"Team {'-'.join(str(m.id) for m in members)}")
        self.db.add(team)
        await self.db.flush()
        for member in members:
            self.db.add(TeamMember(team_id=team.id, student_id=member.id))
        await self.db.commit()
        return team

    async def assignment(
        self,
        course: Course,
        title: str = "Essay 1",
        evaluation_due_date: Optional[datetime] = None
    ) -> Assignment:
        return await self._save(Assignment(
            course_id=course.id,
            title=title,
            evaluation_due_date=evaluation_due_date
        ))

    async def submit(
        self,
        assignment: Assignment,
        team: Team,
        status: SubmissionStatus = SubmissionStatus.SUBMITTED
    ) -> Submission:
        return await self._save(Submission(
            assignment_id=assignment.id,
            team_id=team.id,
            status=status,
            submitted_at=datetime.utcnow()
        ))


@dataclass
class Classroom:
    course: Course
    assignment: Assignment
    teams: List[Team]
    members: Dict[int, List[User]]
    students: List[User]
    submissions: Dict[int, Submission] = field(default_factory=dict)

    def member_ids(self, team: Team) -> List[int]:
        return [s.id for s in self.members[team.id]]


async def build_classroom(roster: RosterBuilder, team_count: int = 6, team_size: int = 2) -> Classroom:
    """A course with `team_count` submitted teams of `team_size` enrolled students."""
    course = await roster.course()
    assignment = await roster.assignment(course)

    teams: List[Team] = []
    members: Dict[int, List[User]] = {}
    students: List[User] = []
    submissions: Dict[int, Submission] = {}
    for _ in range(team_count):
        team_members = [await roster.student(course) for _ in range(team_size)]
        team = await roster.team(course, team_members)
        teams.append(team)
        members[team.id] = team_members
        students.extend(team_members)
        submissions[team.id] = await roster.submit(assignment, team)

    return Classroom(
        course=course,
        assignment=assignment,
        teams=teams,
        members=members,
        students=students,
        submissions=submissions,
    )


@pytest_asyncio.fixture
async def roster(db_session) -> RosterBuilder:
    return RosterBuilder(db_session)


@pytest_asyncio.fixture
async def classroom(roster) -> Classroom:
    """Six submitted teams of two enrolled students each."""
    return await build_classroom(roster)


@pytest.fixture
def make_classroom(roster):
    """Build additional classrooms with a custom shape."""
    async def _make(team_count: int = 6, team_size: int = 2) -> Classroom:
        return await build_classroom(roster, team_count=team_count, team_size=team_size)

    return _make


@pytest.fixture
def invest(db_session):
    """Insert an investment row directly, bypassing the write path checks."""
    async def _invest(
        classroom: Classroom,
        investor: User,
        team: Team,
        tokens: int,
        is_incomplete: bool = False
    ) -> Investment:
        investment = Investment(
            assignment_id=classroom.assignment.id,
            investor_student_id=investor.id,
            invested_team_id=team.id,
            submission_id=classroom.submissions[team.id].id,
            tokens=tokens,
            is_incomplete=is_incomplete,
        )
        db_session.add(investment)
        await db_session.commit()
        return investment

    return _invest
