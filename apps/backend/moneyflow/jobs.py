"""Scheduled trigger for recurring generation.

Run once a day from cron or any external scheduler::

    python -m moneyflow.jobs [--as-of YYYY-MM-DD]

Prints the run report as JSON and exits non-zero when any rule failed.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from datetime import date

from moneyflow.core.database import SessionLocal, session_scope
from moneyflow.core.logging import configure_logging
from moneyflow.services.generation_engine import DueRunReport, GenerationEngine


def run_due(as_of: date | None = None) -> DueRunReport:
    with session_scope(SessionLocal) as db:
        return GenerationEngine(db).generate_due(as_of)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate due recurring transactions")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Run date (default: today)")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    report = run_due(args.as_of)
    print(json.dumps(asdict(report), default=str, indent=2))
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
