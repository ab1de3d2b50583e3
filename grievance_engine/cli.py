"""
cli.py - Command-Line Interface

Usage:
    grievance-engine init-db
    grievance-engine sweep --retention-hours 24
    grievance-engine worker
    grievance-engine serve --port 8000
    grievance-engine history GRV-2026-000123 --output history.json
    grievance-engine reconcile 42

Exit Codes:
    0 = success
    1 = engine error (not found, conflict, storage...)
"""
import argparse
import json
import logging
import sys
from typing import Callable, List, Optional

import uvicorn

from .config import settings
from .database import init_db
from .errors import GrievanceEngineError
from .lifecycle import GrievanceLifecycle
from .worker import SweepWorker

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="grievance-engine",
        description="Grievance lifecycle engine administration",
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")

    sweep_parser = subparsers.add_parser("sweep", help="Delete expired unclaimed attachments once")
    sweep_parser.add_argument(
        "--retention-hours",
        type=float,
        default=None,
        help=f"Retention window (default {settings.ATTACHMENT_RETENTION_HOURS})",
    )

    subparsers.add_parser("worker", help="Run the periodic sweep worker")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=settings.API_HOST)
    serve_parser.add_argument("--port", type=int, default=settings.API_PORT)

    history_parser = subparsers.add_parser("history", help="Print a grievance's tracking history as JSON")
    history_parser.add_argument("ref", help="Grievance id or ticket code")
    history_parser.add_argument("--output", "-o", help="Write the JSON to this file instead of stdout")

    reconcile_parser = subparsers.add_parser("reconcile", help="Repair the cached status from the ledger")
    reconcile_parser.add_argument("ref", help="Grievance id or ticket code")

    return parser


def main(
    argv: Optional[List[str]] = None,
    lifecycle_factory: Callable[[], GrievanceLifecycle] = GrievanceLifecycle,
) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        if args.command == "init-db":
            init_db()
            print("Database initialised")
        elif args.command == "sweep":
            deleted = lifecycle_factory().sweep_expired_attachments(args.retention_hours)
            print(f"Deleted {deleted} expired attachments")
        elif args.command == "worker":
            SweepWorker(lifecycle=lifecycle_factory()).start()
        elif args.command == "serve":
            uvicorn.run("grievance_engine.main:app", host=args.host, port=args.port, log_level=args.log_level.lower())
        elif args.command == "history":
            run_history(args, lifecycle_factory())
        elif args.command == "reconcile":
            repaired = lifecycle_factory().reconcile_status(args.ref)
            print("Repaired cached status" if repaired else "Cached status already matches ledger")
    except GrievanceEngineError as e:
        print(f"Error: {e.error.error_code.value}: {e}", file=sys.stderr)
        return 1
    return 0


def run_history(args: argparse.Namespace, lifecycle: GrievanceLifecycle) -> None:
    detail = lifecycle.view(args.ref)
    payload = json.dumps(detail.to_dict(), indent=2)
    if args.output:
        with open(args.output, "w") as f:
            f.write(payload)
        print(f"History written to: {args.output}")
    else:
        print(payload)


if __name__ == "__main__":
    sys.exit(main())
