"""
Evaluation Distributor Tests

- every student gets k distinct teams, never their own
- load is spread across teams
- invalid requests write nothing
- redistribution requires force and keeps completed evaluations
- stored self-evaluations are cleaned up before distributing
"""
from collections import Counter
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, func

from peergrade.orm import (
    EvaluationAssignment, EvaluationStatus, TeamEvaluation, Assignment, CourseEnrollment,
    EnrollmentStatus
)
from peergrade.services.evaluation_distributor import (
    distribute_evaluations, is_assignment_distributed, plan_distribution,
    get_student_evaluations,
    DistributionValidationError, AssignmentNotFoundError, AlreadyDistributedError
)
from peergrade.services.evaluation_validator import find_self_evaluations
from peergrade.services.roster_service import SubmittedTeam

NOW = datetime(2025, 3, 1, 9, 0)
START = NOW
DUE = NOW + timedelta(days=7)


async def _evaluations(db, assignment_id):
    result = await db.execute(
        select(EvaluationAssignment).where(EvaluationAssignment.assignment_id == assignment_id)
    )
    return list(result.scalars().all())


# =============================================================================
# Planning
# =============================================================================

class TestPlanDistribution:

    def _teams(self, count, size=2):
        teams = []
        student = 1
        for team_id in range(1, count + 1):
            members = set(range(student, student + size))
            student += size
            teams.append(SubmittedTeam(team_id=team_id, submission_id=100 + team_id, member_ids=members))
        return teams

    def test_no_student_is_assigned_their_own_team(self):
        teams = self._teams(6)
        students = list(range(1, 13))
        plan, warnings = plan_distribution(students, teams, 3)

        assert warnings == []
        for student_id, targets in plan.items():
            assert len(targets) == 3
            assert len({t.team_id for t in targets}) == 3
            assert all(not t.has_member(student_id) for t in targets)

    def test_load_is_spread_across_teams(self):
        teams = self._teams(6)
        plan, _ = plan_distribution(list(range(1, 13)), teams, 3)

        load = Counter(t.team_id for targets in plan.values() for t in targets)
        assert sum(load.values()) == 36
        assert set(load) == {t.team_id for t in teams}
        assert max(load.values()) - min(load.values()) <= 2

    def test_small_pool_yields_warning(self):
        teams = self._teams(3)
        # Student 1 belongs to two of the three teams
        teams[1].member_ids.add(1)
        plan, warnings = plan_distribution([1, 3], teams, 2)

        assert len(plan[1]) == 1
        assert len(warnings) == 1
        assert warnings[0].student_id == 1
        assert warnings[0].requested == 2
        assert warnings[0].assigned == 1

    def test_same_seed_gives_same_plan(self):
        teams = self._teams(6)
        students = list(range(1, 13))
        first, _ = plan_distribution(students, teams, 2, seed=7)
        second, _ = plan_distribution(students, teams, 2, seed=7)

        assert {s: [t.team_id for t in ts] for s, ts in first.items()} == \
               {s: [t.team_id for t in ts] for s, ts in second.items()}

    def test_without_seed_is_deterministic(self):
        teams = self._teams(5)
        first, _ = plan_distribution(list(range(1, 11)), teams, 3)
        second, _ = plan_distribution(list(range(1, 11)), teams, 3)
        assert first == second

    def test_existing_targets_are_kept_and_counted(self):
        teams = self._teams(4)
        plan, warnings = plan_distribution([1], teams, 2, existing={1: {2}})

        assert len(plan[1]) == 1
        assert plan[1][0].team_id not in (1, 2)
        assert warnings == []


# =============================================================================
# Distribution
# =============================================================================

class TestDistributeEvaluations:

    @pytest.mark.asyncio
    async def test_every_student_gets_k_teams_excluding_own(self, db_session, classroom):
        result = await distribute_evaluations(
            classroom.assignment.id, 3, START, DUE, db_session, now=NOW
        )

        assert result.count == len(classroom.students) * 3
        assert result.warnings == []

        evaluations = await _evaluations(db_session, classroom.assignment.id)
        per_student = Counter(e.evaluator_student_id for e in evaluations)
        assert set(per_student.values()) == {3}

        team_of = {s.id: team_id for team_id, members in classroom.members.items() for s in members}
        for evaluation in evaluations:
            assert evaluation.evaluated_team_id != team_of[evaluation.evaluator_student_id]
            assert evaluation.status == EvaluationStatus.ASSIGNED
            assert evaluation.due_at == DUE
            assert evaluation.submission_id == classroom.submissions[evaluation.evaluated_team_id].id

        report = await find_self_evaluations(db_session, classroom.assignment.id)
        assert report.total == 0

    @pytest.mark.asyncio
    async def test_opens_the_evaluation_window(self, db_session, classroom):
        await distribute_evaluations(classroom.assignment.id, 2, START, DUE, db_session, now=NOW)

        assignment = await db_session.get(Assignment, classroom.assignment.id)
        assert assignment.is_evaluation_active is True
        assert assignment.evaluation_start_date == START
        assert assignment.evaluation_due_date == DUE
        assert await is_assignment_distributed(classroom.assignment.id, db_session)

    @pytest.mark.asyncio
    async def test_aware_datetimes_are_stored_as_utc(self, db_session, classroom):
        from datetime import timezone
        due = (DUE + timedelta(hours=2)).replace(tzinfo=timezone(timedelta(hours=2)))
        await distribute_evaluations(classroom.assignment.id, 1, START, due, db_session, now=NOW)

        assignment = await db_session.get(Assignment, classroom.assignment.id)
        assert assignment.evaluation_due_date == DUE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [0, 11, -1])
    async def test_rejects_out_of_range_k(self, db_session, classroom, k):
        with pytest.raises(DistributionValidationError):
            await distribute_evaluations(classroom.assignment.id, k, START, DUE, db_session, now=NOW)
        assert await _evaluations(db_session, classroom.assignment.id) == []

    @pytest.mark.asyncio
    async def test_rejects_start_after_due(self, db_session, classroom):
        with pytest.raises(DistributionValidationError):
            await distribute_evaluations(classroom.assignment.id, 2, DUE, START, db_session, now=NOW)

    @pytest.mark.asyncio
    async def test_rejects_due_in_the_past(self, db_session, classroom):
        with pytest.raises(DistributionValidationError):
            await distribute_evaluations(
                classroom.assignment.id, 2, NOW - timedelta(days=3), NOW - timedelta(days=1),
                db_session, now=NOW
            )

    @pytest.mark.asyncio
    async def test_rejects_due_beyond_horizon(self, db_session, classroom):
        with pytest.raises(DistributionValidationError):
            await distribute_evaluations(
                classroom.assignment.id, 2, START, NOW + timedelta(days=400), db_session, now=NOW
            )

    @pytest.mark.asyncio
    async def test_requires_k_plus_one_submitted_teams(self, db_session, make_classroom):
        small = await make_classroom(team_count=3)
        with pytest.raises(DistributionValidationError):
            await distribute_evaluations(small.assignment.id, 3, START, DUE, db_session, now=NOW)
        assert await _evaluations(db_session, small.assignment.id) == []

    @pytest.mark.asyncio
    async def test_requires_active_students(self, db_session, classroom):
        result = await db_session.execute(
            select(CourseEnrollment).where(CourseEnrollment.course_id == classroom.course.id)
        )
        for enrollment in result.scalars().all():
            enrollment.status = EnrollmentStatus.DROPPED
        await db_session.commit()

        with pytest.raises(DistributionValidationError):
            await distribute_evaluations(classroom.assignment.id, 2, START, DUE, db_session, now=NOW)

    @pytest.mark.asyncio
    async def test_dropped_students_are_not_assigned(self, db_session, classroom):
        dropped = classroom.students[0]
        result = await db_session.execute(
            select(CourseEnrollment).where(CourseEnrollment.user_id == dropped.id)
        )
        result.scalar_one().status = EnrollmentStatus.DROPPED
        await db_session.commit()

        await distribute_evaluations(classroom.assignment.id, 2, START, DUE, db_session, now=NOW)

        assert await get_student_evaluations(classroom.assignment.id, dropped.id, db_session) == []

    @pytest.mark.asyncio
    async def test_unknown_assignment(self, db_session, classroom):
        with pytest.raises(AssignmentNotFoundError):
            await distribute_evaluations(9999, 2, START, DUE, db_session, now=NOW)

    @pytest.mark.asyncio
    async def test_second_run_without_force_is_rejected(self, db_session, classroom):
        await distribute_evaluations(classroom.assignment.id, 2, START, DUE, db_session, now=NOW)

        with pytest.raises(AlreadyDistributedError):
            await distribute_evaluations(classroom.assignment.id, 2, START, DUE, db_session, now=NOW)

    @pytest.mark.asyncio
    async def test_force_replaces_pending_and_keeps_completed(self, db_session, classroom):
        await distribute_evaluations(classroom.assignment.id, 2, START, DUE, db_session, now=NOW)

        student = classroom.students[0]
        held = await get_student_evaluations(classroom.assignment.id, student.id, db_session)
        completed = held[0]
        completed.status = EvaluationStatus.COMPLETED
        completed.completed_at = NOW
        await db_session.commit()
        completed_id, completed_team = completed.id, completed.evaluated_team_id

        result = await distribute_evaluations(
            classroom.assignment.id, 3, START, DUE, db_session, now=NOW, force=True
        )

        assert result.count == len(classroom.students) * 3 - 1
        now_held = await get_student_evaluations(classroom.assignment.id, student.id, db_session)
        assert len(now_held) == 3
        assert completed_id in {e.id for e in now_held}
        assert len({e.evaluated_team_id for e in now_held}) == 3
        assert completed_team in {e.evaluated_team_id for e in now_held}

    @pytest.mark.asyncio
    async def test_student_in_two_teams_gets_warning(self, db_session, roster, make_classroom):
        room = await make_classroom(team_count=3)
        double_member = room.students[0]
        # Extra team containing the same student, also submitted
        extra = await roster.team(room.course, [double_member, await roster.student(room.course)])
        await roster.submit(room.assignment, extra)

        result = await distribute_evaluations(room.assignment.id, 3, START, DUE, db_session, now=NOW)

        warned = {w.student_id: w for w in result.warnings}
        assert double_member.id in warned
        assert warned[double_member.id].requested == 3
        assert warned[double_member.id].assigned == 2

        report = await find_self_evaluations(db_session, room.assignment.id)
        assert report.total == 0

    @pytest.mark.asyncio
    async def test_stored_self_evaluations_are_cleaned_first(self, db_session, classroom):
        team = classroom.teams[0]
        db_session.add(TeamEvaluation(
            assignment_id=classroom.assignment.id,
            evaluator_team_id=team.id,
            evaluated_team_id=team.id,
            submission_id=classroom.submissions[team.id].id,
        ))
        await db_session.commit()

        result = await distribute_evaluations(classroom.assignment.id, 2, START, DUE, db_session, now=NOW)

        assert result.cleanup.deleted_team == 1
        count = await db_session.execute(select(func.count(TeamEvaluation.id)))
        assert count.scalar() == 0

    @pytest.mark.asyncio
    async def test_draft_submissions_are_not_evaluated(self, db_session, roster, classroom):
        from peergrade.orm import SubmissionStatus
        late_members = [await roster.student(classroom.course) for _ in range(2)]
        late = await roster.team(classroom.course, late_members)
        await roster.submit(classroom.assignment, late, status=SubmissionStatus.DRAFT)

        await distribute_evaluations(classroom.assignment.id, 3, START, DUE, db_session, now=NOW)

        evaluations = await _evaluations(db_session, classroom.assignment.id)
        assert late.id not in {e.evaluated_team_id for e in evaluations}
        # Members of the draft team still evaluate others
        assert {late_members[0].id, late_members[1].id} <= {e.evaluator_student_id for e in evaluations}
