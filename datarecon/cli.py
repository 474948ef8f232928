"""
Run reconciliations once from the command line.

Run: datarecon-run customers orders [--config config/reconciliation.yml]

Prints one JSON document per completed run.

Exit codes:
  0 - Every requested dataset completed
  1 - At least one dataset failed
  2 - Configuration or record store could not be loaded
"""

import argparse
import json
import sys
from typing import List, Optional

import structlog

from datarecon import database
from datarecon.config import settings
from datarecon.exceptions import ReconciliationError
from datarecon.routers.runs import serialize_run
from datarecon.services.config_loader import load_reconciliation_config
from datarecon.services.reconciliation import ReconciliationService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile source and target datasets and print run summaries"
    )
    parser.add_argument(
        "dataset_ids",
        nargs="*",
        help="Dataset ids to reconcile (default: the configured triggerOnStart list)"
    )
    parser.add_argument(
        "--config",
        default=settings.reconciliation_config_path,
        help=f"Reconciliation YAML (default: {settings.reconciliation_config_path})"
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="Record store URL (default: DATABASE_URL)"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    # stdout carries only run documents
    structlog.configure(logger_factory=lambda *_: structlog.PrintLogger(file=sys.stderr))

    database.init_db(args.database_url)
    if database.SessionLocal is None:
        print("ERROR: Record store not configured. Set DATABASE_URL or pass --database-url.", file=sys.stderr)
        return 2

    try:
        registry, config = load_reconciliation_config(args.config)
    except ReconciliationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    dataset_ids = args.dataset_ids or config.trigger_on_start
    if not dataset_ids:
        print("ERROR: No dataset ids given and triggerOnStart is empty.", file=sys.stderr)
        return 2

    service = ReconciliationService.from_session_factory(config, database.SessionLocal)
    try:
        completed = 0
        for run in service.run_ignore_failure(dataset_ids):
            completed += 1
            print(json.dumps(serialize_run(run), default=str))
    finally:
        registry.dispose()

    if completed < len(dataset_ids):
        print(f"{len(dataset_ids) - completed} of {len(dataset_ids)} datasets failed", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
