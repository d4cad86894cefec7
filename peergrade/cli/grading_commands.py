"""
Grading CLI Commands

grade, calculate-interest
"""
import asyncio
import json

from peergrade import database


class GradingCommand:
    """Grading CLI command handler."""

    def __init__(self, dry_run: bool = False, as_json: bool = False):
        self.dry_run = dry_run
        self.as_json = as_json

    def execute(self, args) -> int:
        """Execute grading command."""
        if args.command == "grade":
            return self._run(self._grade(args))
        elif args.command == "calculate-interest":
            if args.student is not None:
                return self._run(self._student_summary(args))
            return self._run(self._interest(args))
        else:
            print("Error: Unknown grading action")
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

    async def _grade(self, args) -> int:
        from peergrade.services.grading_engine import grade_assignment

        if self.dry_run:
            print(f"[DRY RUN] Would recompute grades for assignment {args.assignment}")
            return 0

        async with database.AsyncSessionLocal() as db:
            result = await grade_assignment(args.assignment, db, tie_break=args.tie_break)

        if self.as_json:
            print(json.dumps(result.to_dict(), indent=2, default=str))
            return 0

        print(f"=== Grades: assignment {args.assignment} ===")
        for grade in result.team_grades:
            rank = grade.rank if grade.rank is not None else "-"
            print(f"  #{rank:<4} team {grade.team_id:<6} avg {grade.average_investment:>8}  "
                  f"{grade.tier.value:<10} {grade.percentage}%  ({grade.total_investments} investments)")
        for skipped in result.skipped:
            print(f"  ! team {skipped.team_id} skipped: {skipped.reason}")
        print(f"Tiers: {result.statistics['tier_counts']}")
        return 0

    async def _interest(self, args) -> int:
        from peergrade.services.interest_calculator import calculate_assignment_interest

        if self.dry_run:
            print(f"[DRY RUN] Would recompute interest for assignment {args.assignment}")
            return 0

        async with database.AsyncSessionLocal() as db:
            result = await calculate_assignment_interest(args.assignment, db)

        if self.as_json:
            print(json.dumps(result.to_dict(), indent=2, default=str))
            return 0

        print(f"=== Interest: assignment {args.assignment} ===")
        for student in result.student_interests:
            print(f"  student {student.student_id:<6} {student.total_interest:>8}  "
                  f"({len(student.records)} investments)")
        for skipped in result.skipped:
            print(f"  ! student {skipped.student_id} skipped: {skipped.reason}")
        print(f"Total interest: {result.total_interest}")
        return 0

    async def _student_summary(self, args) -> int:
        from peergrade.services.interest_calculator import get_student_interest_summary

        async with database.AsyncSessionLocal() as db:
            summary = await get_student_interest_summary(args.student, db)

        if self.as_json:
            print(json.dumps(summary, indent=2, default=str))
            return 0

        print(f"=== Interest: student {args.student} ===")
        for entry in summary["assignments"]:
            print(f"  assignment {entry['assignment_id']:<6} {entry['total_interest']:>8}  "
                  f"({entry['tokens_invested']} tokens)")
        print(f"Total interest: {summary['total_interest']}")
        return 0
