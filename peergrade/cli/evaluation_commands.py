"""
Evaluation CLI Commands

distribute, check-self-evaluations, fix-self-evaluations, status
"""
import asyncio
import json
from datetime import datetime
from typing import Any, Dict

from peergrade import database


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class EvaluationCommand:
    """Evaluation CLI command handler."""

    def __init__(self, dry_run: bool = False, as_json: bool = False):
        self.dry_run = dry_run
        self.as_json = as_json

    def execute(self, args) -> int:
        """Execute evaluation command."""
        if args.command == "distribute":
            return self._run(self._distribute(args))
        elif args.command == "check-self-evaluations":
            return self._run(self._check(args))
        elif args.command == "fix-self-evaluations":
            if self.dry_run:
                return self._run(self._check(args))
            return self._run(self._fix(args))
        elif args.command == "status":
            return self._run(self._status(args))
        else:
            print("Error: Unknown evaluation action")
            return 1

    def _run(self, coro) -> int:
        try:
            return asyncio.run(self._with_dispose(coro))
        except Exception as e:
            print(f"Error: {getattr(e, 'message', e)}")
            return 1

    async def _with_dispose(self, coro) -> int:
        try:
            return await coro
        finally:
            await database.engine.dispose()

    def _print_json(self, data: Dict[str, Any]) -> None:
        print(json.dumps(data, indent=2, default=str))

    async def _distribute(self, args) -> int:
        from peergrade.services.evaluation_distributor import (
            distribute_evaluations, plan_distribution
        )
        from peergrade.services.roster_service import (
            get_assignment, get_active_student_ids, get_submitted_teams
        )

        start_at = _parse_datetime(args.start) if args.start else datetime.utcnow()
        due_at = _parse_datetime(args.due)

        async with database.AsyncSessionLocal() as db:
            if self.dry_run:
                assignment = await get_assignment(args.assignment, db)
                if not assignment:
                    print(f"Error: Assignment {args.assignment} not found")
                    return 1
                students = await get_active_student_ids(assignment.course_id, db)
                teams = await get_submitted_teams(args.assignment, db)
                plan, warnings = plan_distribution(students, teams, args.per_student, seed=args.seed)
                print(f"[DRY RUN] Would create {sum(len(t) for t in plan.values())} evaluations "
                      f"for {len(students)} students over {len(teams)} teams")
                for warning in warnings:
                    print(f"  ! {warning.message}")
                return 0

            result = await distribute_evaluations(
                assignment_id=args.assignment,
                evaluations_per_student=args.per_student,
                start_at=start_at,
                due_at=due_at,
                db=db,
                force=args.force,
                seed=args.seed
            )

        if self.as_json:
            self._print_json(result.to_dict())
            return 0

        print("=== Evaluation Distribution ===")
        print(f"Created {result.count} evaluations ({args.per_student} per student)")
        print(f"Self-evaluations removed first: "
              f"{result.cleanup.deleted_individual} individual, {result.cleanup.deleted_team} team")
        for warning in result.warnings:
            print(f"  ! {warning.message}")
        return 0

    async def _check(self, args) -> int:
        from peergrade.services.evaluation_validator import find_self_evaluations

        async with database.AsyncSessionLocal() as db:
            report = await find_self_evaluations(db, assignment_id=args.assignment)

        if self.as_json:
            self._print_json(report.to_dict())
            return 0

        print("=== Self-Evaluation Check ===")
        print(f"Individual: {len(report.individual)}")
        for violation in report.individual:
            print(f"  - evaluation {violation.id}: student {violation.evaluator_student_id} "
                  f"-> own team {violation.evaluated_team_id}")
        print(f"Team: {len(report.team)}")
        for violation in report.team:
            print(f"  - team evaluation {violation.id}: team {violation.evaluator_team_id} "
                  f"-> team {violation.evaluated_team_id}")
        if self.dry_run and report.total:
            print(f"[DRY RUN] Would delete {report.total} records")
        return 0

    async def _fix(self, args) -> int:
        from peergrade.services.evaluation_validator import cleanup_self_evaluations

        async with database.AsyncSessionLocal() as db:
            cleanup = await cleanup_self_evaluations(db, assignment_id=args.assignment)

        if self.as_json:
            self._print_json(cleanup.to_dict())
        else:
            print("=== Self-Evaluation Cleanup ===")
            print(f"Deleted individual: {cleanup.deleted_individual}")
            print(f"Deleted team: {cleanup.deleted_team}")
            for error in cleanup.errors:
                print(f"  ! {error}")
        return 1 if cleanup.errors else 0

    async def _status(self, args) -> int:
        from peergrade.services.evaluation_status import get_evaluation_status, summarize_status

        async with database.AsyncSessionLocal() as db:
            statuses = await get_evaluation_status(args.assignment, db)

        if self.as_json:
            self._print_json({
                "assignment_id": args.assignment,
                "summary": summarize_status(statuses),
                "students": [s.to_dict() for s in statuses],
            })
            return 0

        summary = summarize_status(statuses)
        print(f"=== Evaluation Status: assignment {args.assignment} ===")
        print(f"Students: {summary['students']} ({summary['students_finished']} finished)")
        print(f"Evaluations: {summary['completed_evaluations']}/{summary['total_evaluations']} "
              f"({summary['evaluation_progress']}%)")
        for s in statuses:
            print(f"  {s.student_id:>6}  {s.full_name:<30} "
                  f"evaluations {s.completed_evaluations}/{s.total_evaluations}  "
                  f"investments {s.investments_made}/{s.pending_investments + s.investments_made}  "
                  f"tokens {s.tokens_used}")
        return 0
