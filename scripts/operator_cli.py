#!/usr/bin/env python3
"""
Operator actions against the order kernel.

Usage:
    python3 scripts/operator_cli.py --actor <name> <command> [options]

Commands:
    retry <task_id>                         Reset a pending/failed task and dispatch it once.
    override-status <task_id> <status>      Set a task status by hand (with optional tracking).
    reconcile <task_id>                     Ask the producer's API for the task's status.
    refund <order_number> <amount_cents>    Book a refund outside the payment webhook.
    report <start> <end>                    Generate the period report for a closed date range.
    verify-report <report_id>               Recompute a period report's content hash.
    stuck                                   List failed and long-pending tasks; alerts operators.

Examples:
    python3 scripts/operator_cli.py --actor anna retry 6f1c...
    python3 scripts/operator_cli.py --actor anna override-status 6f1c... shipped --tracking-number 1Z999
    python3 scripts/operator_cli.py --actor anna refund AIGG-20260115-K3ZQ 2000 --reason "Damaged in transit"
    python3 scripts/operator_cli.py --actor anna report 2026-01-01 2026-01-31

Environment:
    DATABASE_URL and the producer / mail variables named in the configuration set.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Operator actions: retry, status override, refund, period report, stuck tasks.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--actor", required=True, help="Operator name written to the audit log.")
    parser.add_argument("--config", default="default", help="Configuration set name (default: default).")
    sub = parser.add_subparsers(dest="command", required=True)

    retry = sub.add_parser("retry", help="Retry a pending or failed fulfillment task.")
    retry.add_argument("task_id", type=UUID)

    override = sub.add_parser("override-status", help="Set a fulfillment task status.")
    override.add_argument("task_id", type=UUID)
    override.add_argument(
        "status",
        choices=["sent_to_producer", "confirmed", "shipped", "delivered", "cancelled"],
    )
    override.add_argument("--tracking-number")
    override.add_argument("--tracking-url")
    override.add_argument("--notes")

    reconcile = sub.add_parser("reconcile", help="Poll the producer for a task's status.")
    reconcile.add_argument("task_id", type=UUID)

    refund = sub.add_parser("refund", help="Refund part or all of an order.")
    refund.add_argument("order_number")
    refund.add_argument("amount_cents", type=int)
    refund.add_argument("--reason")
    refund.add_argument("--refund-id", help="External refund id, makes the refund idempotent.")

    report = sub.add_parser("report", help="Generate a period report.")
    report.add_argument("start", type=date.fromisoformat)
    report.add_argument("end", type=date.fromisoformat)

    verify = sub.add_parser("verify-report", help="Verify a period report's content hash.")
    verify.add_argument("report_id", type=UUID)

    sub.add_parser("stuck", help="List stuck fulfillment tasks.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so argument errors fail fast
    from order_api.runtime import build_runtime
    from order_config import get_active_config
    from order_kernel.exceptions import OrderKernelError
    from order_kernel.logging_config import configure_logging
    from order_kernel.services.operator_service import format_alerts

    configure_logging(json_output=False)
    try:
        runtime = build_runtime(get_active_config(args.config))
    except (FileNotFoundError, OrderKernelError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    operator = runtime.operator
    try:
        if args.command == "retry":
            outcome = operator.retry_task(args.task_id, args.actor)
            print(f"Task {outcome.task_id}: {outcome.status.value} (retries={outcome.retry_count})")
            if outcome.error:
                print(f"  Error: {outcome.error}")
            return 0 if outcome.success else 2

        if args.command == "override-status":
            new_status = operator.override_task_status(
                args.task_id,
                args.status,
                args.actor,
                tracking_number=args.tracking_number,
                tracking_url=args.tracking_url,
                notes=args.notes,
            )
            print(f"Task {args.task_id}: {new_status.value}")
            return 0

        if args.command == "reconcile":
            new_status = operator.reconcile_task(args.task_id, args.actor)
            print(f"Task {args.task_id}: {new_status.value}")
            return 0

        if args.command == "refund":
            result = operator.trigger_refund(
                args.order_number,
                args.amount_cents,
                args.actor,
                reason=args.reason,
                external_refund_id=args.refund_id,
            )
            note = " (already processed)" if result.already_processed else ""
            print(
                f"{result.entry_type.value}: {result.refund_amount_cents}c "
                f"ledger={result.ledger_entry_id}{note}"
            )
            return 0

        if args.command == "report":
            summary = operator.generate_period_report(args.start, args.end, args.actor)
            print(f"Report {summary.report_id} for {summary.period_start}..{summary.period_end}")
            print(f"  Entries: {summary.entry_count} {summary.entry_type_counts}")
            for name, cents in summary.totals.items():
                print(f"  {name}: {cents}")
            print(f"  Hash: {summary.content_hash}")
            if summary.archived_report_ids:
                print(f"  Archived: {', '.join(str(i) for i in summary.archived_report_ids)}")
            return 0

        if args.command == "verify-report":
            ok = operator.verify_period_report(args.report_id)
            print("OK" if ok else "MISMATCH")
            return 0 if ok else 2

        if args.command == "stuck":
            alerts = operator.find_stuck_tasks()
            if not alerts:
                print("No stuck tasks.")
                return 0
            for line in format_alerts(alerts):
                print(f"  {line}")
            return 2
    except OrderKernelError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1
    finally:
        runtime.engine.dispose()

    return 1


if __name__ == "__main__":
    sys.exit(main())
