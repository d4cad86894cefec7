"""
HTTP API Tests

End-to-end through FastAPI: status codes, error envelope and the main
distribute -> invest -> grade -> interest flow.
"""
from datetime import datetime, timedelta

import pytest

from peergrade.orm import TeamEvaluation


def _window(days=7):
    start = datetime.utcnow()
    return {
        "start_at": start.isoformat(),
        "due_at": (start + timedelta(days=days)).isoformat(),
    }


def _investment(classroom, investor, team, tokens):
    return {
        "assignment_id": classroom.assignment.id,
        "investor_id": investor.id,
        "team_id": team.id,
        "tokens": tokens,
    }


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_settings_hide_database_url(self, client):
        response = await client.get("/api/settings")
        assert response.status_code == 200
        data = response.json()
        assert "DATABASE_URL" not in data
        assert data["MAX_TOKENS_PER_ASSIGNMENT"] == 100


class TestDistributionRoutes:

    @pytest.mark.asyncio
    async def test_distribute(self, client, classroom):
        response = await client.post(
            f"/api/assignments/{classroom.assignment.id}/distribute",
            json={"evaluations_per_student": 3, **_window()}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["count"] == len(classroom.students) * 3
        assert data["evaluations_per_student"] == 3
        assert data["warnings"] == []
        assert data["cleanup"]["deleted_individual"] == 0

        status = await client.get(f"/api/assignments/{classroom.assignment.id}/distribute")
        assert status.json()["is_distributed"] is True
        assert status.json()["is_evaluation_active"] is True

    @pytest.mark.asyncio
    async def test_student_evaluations(self, client, classroom):
        await client.post(
            f"/api/assignments/{classroom.assignment.id}/distribute",
            json={"evaluations_per_student": 2, **_window()}
        )
        student = classroom.students[0]

        response = await client.get(
            f"/api/assignments/{classroom.assignment.id}/students/{student.id}/evaluations"
        )

        assert response.status_code == 200
        evaluations = response.json()
        assert len(evaluations) == 2
        assert all(e["status"] == "assigned" for e in evaluations)
        assert classroom.teams[0].id not in {e["evaluated_team_id"] for e in evaluations}

    @pytest.mark.asyncio
    async def test_invalid_k_is_bad_request(self, client, classroom):
        response = await client.post(
            f"/api/assignments/{classroom.assignment.id}/distribute",
            json={"evaluations_per_student": 0, **_window()}
        )
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_unknown_assignment_is_not_found(self, client, classroom):
        response = await client.post(
            "/api/assignments/9999/distribute",
            json={"evaluations_per_student": 2, **_window()}
        )
        assert response.status_code == 404
        assert response.json()["code"] == "ASSIGNMENT_NOT_FOUND"

        response = await client.get("/api/assignments/9999/distribute")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_second_distribution_needs_force(self, client, classroom):
        url = f"/api/assignments/{classroom.assignment.id}/distribute"
        await client.post(url, json={"evaluations_per_student": 2, **_window()})

        response = await client.post(url, json={"evaluations_per_student": 2, **_window()})
        assert response.status_code == 400
        assert response.json()["code"] == "ALREADY_DISTRIBUTED"

        response = await client.post(url, json={"evaluations_per_student": 2, "force": True, **_window()})
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_missing_field_is_validation_error(self, client, classroom):
        response = await client.post(
            f"/api/assignments/{classroom.assignment.id}/distribute",
            json={"evaluations_per_student": 2}
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestInvestmentRoutes:

    @pytest.mark.asyncio
    async def test_invest_and_regrade(self, client, classroom):
        investor = classroom.members[classroom.teams[1].id][0]

        response = await client.post(
            "/api/investments", json=_investment(classroom, investor, classroom.teams[0], 40)
        )

        assert response.status_code == 201
        data = response.json()
        assert data["tokens"] == 40
        assert data["investor_student_id"] == investor.id
        assert data["investment_rank"] == 1
        assert data["regraded"] is True

        grades = await client.get(f"/api/assignments/{classroom.assignment.id}/grades")
        top = grades.json()["grades"][0]
        assert top["team_id"] == classroom.teams[0].id
        assert top["tier"] == "high"

    @pytest.mark.asyncio
    async def test_own_team_is_rejected(self, client, classroom):
        investor = classroom.members[classroom.teams[0].id][0]

        response = await client.post(
            "/api/investments", json=_investment(classroom, investor, classroom.teams[0], 10)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "SELF_EVALUATION"

    @pytest.mark.asyncio
    async def test_too_many_tokens(self, client, classroom):
        investor = classroom.members[classroom.teams[1].id][0]

        response = await client.post(
            "/api/investments", json=_investment(classroom, investor, classroom.teams[0], 60)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_duplicate_and_budget_errors(self, client, classroom):
        investor = classroom.members[classroom.teams[1].id][0]
        teams = classroom.teams

        first = await client.post("/api/investments", json=_investment(classroom, investor, teams[0], 50))
        assert first.status_code == 201

        duplicate = await client.post("/api/investments", json=_investment(classroom, investor, teams[0], 10))
        assert duplicate.status_code == 400
        assert duplicate.json()["code"] == "DUPLICATE_INVESTMENT"

        await client.post("/api/investments", json=_investment(classroom, investor, teams[2], 50))
        over = await client.post("/api/investments", json=_investment(classroom, investor, teams[3], 1))
        assert over.status_code == 400
        assert over.json()["code"] == "BUDGET_EXCEEDED"

    @pytest.mark.asyncio
    async def test_missing_tokens_is_validation_error(self, client, classroom):
        payload = _investment(classroom, classroom.students[2], classroom.teams[0], 10)
        del payload["tokens"]

        response = await client.post("/api/investments", json=payload)

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_remaining_tokens(self, client, classroom):
        investor = classroom.members[classroom.teams[1].id][0]
        await client.post("/api/investments", json=_investment(classroom, investor, classroom.teams[0], 30))

        response = await client.get(
            "/api/investments/tokens",
            params={"assignment_id": classroom.assignment.id, "student_id": investor.id}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["tokens_used"] == 30
        assert data["tokens_remaining"] == 70
        assert data["teams_remaining"] == 2


class TestGradingRoutes:

    @pytest.mark.asyncio
    async def test_grade_then_interest(self, client, classroom):
        teams = classroom.teams
        for index, tokens in enumerate([40, 35, 30, 25, 20, 10]):
            investor = classroom.members[teams[(index + 1) % 6].id][0]
            response = await client.post(
                "/api/investments", json=_investment(classroom, investor, teams[index], tokens)
            )
            assert response.status_code == 201

        response = await client.post(f"/api/assignments/{classroom.assignment.id}/grade")
        assert response.status_code == 200
        data = response.json()
        assert data["statistics"]["tier_counts"] == {"high": 2, "median": 2, "low": 2, "incomplete": 0}

        response = await client.post(f"/api/assignments/{classroom.assignment.id}/calculate-interest")
        assert response.status_code == 200
        assert response.json()["total_interest"] == "22.00"

        top_investor = classroom.members[teams[1].id][0]
        response = await client.get(f"/api/students/{top_investor.id}/interest")
        assert response.status_code == 200
        assert response.json()["total_interest"] == "8.00"

    @pytest.mark.asyncio
    async def test_interest_before_grading(self, client, classroom):
        response = await client.post(f"/api/assignments/{classroom.assignment.id}/calculate-interest")
        assert response.status_code == 400
        assert response.json()["code"] == "GRADES_NOT_READY"

    @pytest.mark.asyncio
    async def test_grade_unknown_assignment(self, client, classroom):
        response = await client.post("/api/assignments/9999/grade")
        assert response.status_code == 404
        assert response.json()["code"] == "ASSIGNMENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_grade_without_submissions(self, client, roster):
        course = await roster.course()
        assignment = await roster.assignment(course)

        response = await client.post(f"/api/assignments/{assignment.id}/grade")

        assert response.status_code == 400
        assert response.json()["code"] == "NO_SUBMISSIONS"


class TestSelfEvaluationRoutes:

    @pytest.mark.asyncio
    async def test_report_and_cleanup(self, client, db_session, classroom):
        team = classroom.teams[0]
        db_session.add(TeamEvaluation(
            assignment_id=classroom.assignment.id,
            evaluator_team_id=team.id,
            evaluated_team_id=team.id,
            submission_id=classroom.submissions[team.id].id,
        ))
        await db_session.commit()

        report = await client.get(
            "/api/evaluations/self-evaluations",
            params={"assignment_id": classroom.assignment.id}
        )
        assert report.status_code == 200
        assert report.json()["total"] == 1
        assert len(report.json()["team"]) == 1

        cleanup = await client.delete("/api/evaluations/self-evaluations")
        assert cleanup.status_code == 200
        assert cleanup.json()["deleted_team"] == 1

        again = await client.delete("/api/evaluations/self-evaluations")
        assert again.json()["deleted_team"] == 0


class TestEvaluationStatusRoute:

    @pytest.mark.asyncio
    async def test_progress_after_investment(self, client, classroom):
        await client.post(
            f"/api/assignments/{classroom.assignment.id}/distribute",
            json={"evaluations_per_student": 2, **_window()}
        )
        student = classroom.students[0]
        evaluations = (await client.get(
            f"/api/assignments/{classroom.assignment.id}/students/{student.id}/evaluations"
        )).json()
        target = evaluations[0]["evaluated_team_id"]
        await client.post("/api/investments", json={
            "assignment_id": classroom.assignment.id,
            "investor_id": student.id,
            "team_id": target,
            "tokens": 25,
        })

        response = await client.get(f"/api/assignments/{classroom.assignment.id}/evaluation-status")

        assert response.status_code == 200
        data = response.json()
        assert data["summary"]["students"] == len(classroom.students)
        assert data["summary"]["total_evaluations"] == len(classroom.students) * 2
        assert data["summary"]["completed_evaluations"] == 1
        row = [s for s in data["students"] if s["student_id"] == student.id][0]
        assert row["completed_evaluations"] == 1
        assert row["tokens_used"] == 25

    @pytest.mark.asyncio
    async def test_unknown_assignment(self, client, classroom):
        response = await client.get("/api/assignments/9999/evaluation-status")
        assert response.status_code == 404
