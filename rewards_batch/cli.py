"""
rewards-batch -- operator command line for the reward distribution job.

Usage:
    rewards-batch [--config PATH] init-db
    rewards-batch [--config PATH] run
    rewards-batch [--config PATH] schedule [--run-now]
    rewards-batch [--config PATH] jobs [--status STATUS] [--job-name TEXT]
                                       [--limit N] [--offset N]
    rewards-batch [--config PATH] show JOB_ID
    rewards-batch [--config PATH] abandon JOB_ID --reason TEXT
    rewards-batch [--config PATH] verify-ledger

Exit status is 0 on success and 1 when the command failed, the run ended
FAILED or CANCELLED, or the ledger check found drift.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
from pathlib import Path
from typing import Sequence
from uuid import UUID

from rewards_kernel.db.engine import session_scope
from rewards_kernel.exceptions import JobExecutionError
from rewards_kernel.logging_config import configure_logging
from rewards_kernel.selectors.ledger_selector import LedgerSelector

from rewards_batch.domain.types import DistributionRunResult, JobExecution, JobExecutionStatus
from rewards_batch.orchestrator import RewardsOrchestrator
from rewards_batch.services.job_audit import JobAuditService
from rewards_config import get_active_config


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rewards-batch",
        description="Subscription reward distribution job.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file merged over the packaged defaults.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database tables.")
    sub.add_parser("run", help="Run today's distribution once.")

    schedule = sub.add_parser("schedule", help="Run the cron scheduler until interrupted.")
    schedule.add_argument(
        "--run-now",
        action="store_true",
        help="Trigger one run immediately, then follow the schedule.",
    )

    jobs = sub.add_parser("jobs", help="List job executions, newest first.")
    jobs.add_argument(
        "--status",
        type=str.upper,
        choices=[s.value for s in JobExecutionStatus],
        default=None,
    )
    jobs.add_argument("--job-name", default=None, help="Case-insensitive substring.")
    jobs.add_argument("--limit", type=int, default=10)
    jobs.add_argument("--offset", type=int, default=0)

    show = sub.add_parser("show", help="Show one job execution.")
    show.add_argument("job_id", type=UUID)

    abandon = sub.add_parser(
        "abandon", help="Mark a stuck RUNNING execution FAILED so the day can be retried.",
    )
    abandon.add_argument("job_id", type=UUID)
    abandon.add_argument("--reason", required=True)

    sub.add_parser("verify-ledger", help="Check every wallet balance against its ledger.")

    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    configure_logging(level=config.logging.level)
    orchestrator = RewardsOrchestrator.from_config(config)
    try:
        handler = _COMMANDS[args.command]
        return handler(orchestrator, args)
    finally:
        orchestrator.dispose()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_init_db(orchestrator: RewardsOrchestrator, args: argparse.Namespace) -> int:
    orchestrator.init_db()
    print("Tables created.")
    return 0


def _cmd_run(orchestrator: RewardsOrchestrator, args: argparse.Namespace) -> int:
    result = orchestrator.create_distributor().run()
    _print_run_result(result)
    return 1 if result.outcome.is_failure else 0


def _cmd_schedule(orchestrator: RewardsOrchestrator, args: argparse.Namespace) -> int:
    scheduler = orchestrator.create_scheduler(run_on_start=True if args.run_now else None)

    def _shutdown(signum, frame):
        print(f"Received signal {signum}, stopping...", file=sys.stderr)
        scheduler.stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    scheduler.start()
    print(f"Scheduler running; next fire at {scheduler.next_fire_at.isoformat()}")
    scheduler.wait()
    scheduler.stop()
    return 0


def _cmd_jobs(orchestrator: RewardsOrchestrator, args: argparse.Namespace) -> int:
    with session_scope(orchestrator.session_factory) as session:
        audit = _audit(orchestrator, session)
        executions = audit.list_executions(
            status=args.status, job_name=args.job_name, limit=args.limit, offset=args.offset,
        )
        total = audit.count(status=args.status, job_name=args.job_name)

    if not executions:
        print("No job executions found.")
        return 0

    print(f"{'ID':36}  {'JOB':34}  {'DATE':10}  {'STATUS':9}  {'TRY':>3}  STARTED")
    for execution in executions:
        print(
            f"{str(execution.job_execution_id):36}  {execution.job_name[:34]:34}  "
            f"{execution.execution_date.isoformat():10}  {execution.status.value:9}  "
            f"{execution.attempt:>3}  {_fmt(execution.started_at)}"
        )
    print(f"Showing {len(executions)} of {total} (offset {args.offset}).")
    return 0


def _cmd_show(orchestrator: RewardsOrchestrator, args: argparse.Namespace) -> int:
    try:
        with session_scope(orchestrator.session_factory) as session:
            execution = _audit(orchestrator, session).get(args.job_id)
    except JobExecutionError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    _print_execution(execution)
    return 0


def _cmd_abandon(orchestrator: RewardsOrchestrator, args: argparse.Namespace) -> int:
    try:
        with session_scope(orchestrator.session_factory) as session:
            execution = _audit(orchestrator, session).abandon(args.job_id, args.reason)
    except JobExecutionError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    _print_execution(execution)
    return 0


def _cmd_verify_ledger(orchestrator: RewardsOrchestrator, args: argparse.Namespace) -> int:
    with session_scope(orchestrator.session_factory) as session:
        reports = LedgerSelector(session).verify_all()

    drifted = [r for r in reports if not r.is_consistent]
    for report in drifted:
        print(
            f"DRIFT {report.customer_id}/{report.wallet_type} ({report.wallet_id}): "
            f"stored {report.stored_balance} ledger {report.ledger_balance} "
            f"difference {report.difference}"
        )
    print(f"Checked {len(reports)} wallet(s); {len(drifted)} inconsistent.")
    return 1 if drifted else 0


_COMMANDS = {
    "init-db": _cmd_init_db,
    "run": _cmd_run,
    "schedule": _cmd_schedule,
    "jobs": _cmd_jobs,
    "show": _cmd_show,
    "abandon": _cmd_abandon,
    "verify-ledger": _cmd_verify_ledger,
}


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _audit(orchestrator: RewardsOrchestrator, session) -> JobAuditService:
    return JobAuditService(
        session,
        clock=orchestrator.clock,
        actor_id=orchestrator.config.distribution.actor_id,
    )


def _fmt(value) -> str:
    return value.isoformat(sep=" ", timespec="seconds") if value is not None else "-"


def _print_run_result(result: DistributionRunResult) -> None:
    print(f"Outcome:        {result.outcome.value}")
    print(f"Execution date: {result.execution_date.isoformat()}")
    if result.job_execution_id is not None:
        print(f"Job execution:  {result.job_execution_id}")
    if result.processed_count:
        print(f"Processed:      {result.processed_count}")
        print(f"Rewarded:       {result.rewarded_count} ({result.total_rewarded})")
        print(f"Already done:   {result.already_rewarded_count}")
        print(f"Saturated:      {result.saturated_count}")
        print(f"Ineligible:     {result.ineligible_count}")
    if result.error_message:
        print(f"Error:          {result.error_message}")


def _print_execution(execution: JobExecution) -> None:
    print(f"ID:             {execution.job_execution_id}")
    print(f"Job:            {execution.job_name}")
    print(f"Execution date: {execution.execution_date.isoformat()}")
    print(f"Status:         {execution.status.value}")
    print(f"Attempt:        {execution.attempt}")
    print(f"Started:        {_fmt(execution.started_at)}")
    print(f"Completed:      {_fmt(execution.completed_at)}")
    if execution.result is not None:
        print(f"Result:         {json.dumps(execution.result, sort_keys=True)}")
    if execution.error_message:
        print(f"Error:          {execution.error_message}")


if __name__ == "__main__":
    sys.exit(main())
