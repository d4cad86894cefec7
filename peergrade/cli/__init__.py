#!/usr/bin/env python3
"""
PeerGrade Engine CLI

Usage:
    python -m peergrade.cli <command> [options]

Commands:
    init-db                 Create database tables
    distribute              Distribute peer evaluations for an assignment
    check-self-evaluations  Report stored self-evaluations
    fix-self-evaluations    Delete stored self-evaluations
    grade                   Recompute team grades for an assignment
    calculate-interest      Recompute investment interest for an assignment
    status                  Show per-student evaluation progress

Environment:
    DATABASE_URL    SQLAlchemy async connection string
    LOG_LEVEL       DEBUG|INFO|WARNING|ERROR
"""
import sys
import argparse
import logging
from typing import Optional

from peergrade.cli.db_commands import DbCommand
from peergrade.cli.evaluation_commands import EvaluationCommand
from peergrade.cli.grading_commands import GradingCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="peergrade",
        description="Peer evaluation distribution, grading and interest engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init-db
  %(prog)s distribute --assignment 7 --per-student 3 --due 2025-03-08T23:59
  %(prog)s fix-self-evaluations --assignment 7
  %(prog)s grade --assignment 7
  %(prog)s calculate-interest --assignment 7
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without executing"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init-db
    subparsers.add_parser("init-db", help="Create database tables")

    # distribute
    distribute_parser = subparsers.add_parser("distribute", help="Distribute peer evaluations")
    distribute_parser.add_argument("--assignment", "-a", type=int, required=True, help="Assignment ID")
    distribute_parser.add_argument("--per-student", "-k", type=int, required=True, help="Evaluations per student (1-10)")
    distribute_parser.add_argument("--start", help="Evaluation start (ISO 8601, default: now)")
    distribute_parser.add_argument("--due", required=True, help="Evaluation due date (ISO 8601)")
    distribute_parser.add_argument("--force", action="store_true", help="Replace pending evaluations")
    distribute_parser.add_argument("--seed", type=int, help="Tie-break shuffle seed")

    # check-self-evaluations
    check_parser = subparsers.add_parser("check-self-evaluations", help="Report stored self-evaluations")
    check_parser.add_argument("--assignment", "-a", type=int, help="Limit to one assignment")

    # fix-self-evaluations
    fix_parser = subparsers.add_parser("fix-self-evaluations", help="Delete stored self-evaluations")
    fix_parser.add_argument("--assignment", "-a", type=int, help="Limit to one assignment")

    # grade
    grade_parser = subparsers.add_parser("grade", help="Recompute team grades")
    grade_parser.add_argument("--assignment", "-a", type=int, required=True, help="Assignment ID")
    grade_parser.add_argument(
        "--tie-break",
        choices=["submission_id", "team_id"],
        help="Order between equal averages (default: GRADE_TIE_BREAK)"
    )

    # calculate-interest
    interest_parser = subparsers.add_parser("calculate-interest", help="Recompute investment interest")
    interest_group = interest_parser.add_mutually_exclusive_group(required=True)
    interest_group.add_argument("--assignment", "-a", type=int, help="Assignment ID")
    interest_group.add_argument("--student", "-s", type=int, help="Show a student's interest summary")

    # status
    status_parser = subparsers.add_parser("status", help="Per-student evaluation progress")
    status_parser.add_argument("--assignment", "-a", type=int, required=True, help="Assignment ID")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    command_map = {
        "init-db": DbCommand,
        "distribute": EvaluationCommand,
        "check-self-evaluations": EvaluationCommand,
        "fix-self-evaluations": EvaluationCommand,
        "status": EvaluationCommand,
        "grade": GradingCommand,
        "calculate-interest": GradingCommand,
    }

    if parsed.command in command_map:
        handler = command_map[parsed.command](dry_run=parsed.dry_run, as_json=parsed.json)
        return handler.execute(parsed)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
