from __future__ import annotations

import argparse
import asyncio
import json
from datetime import date, datetime

from app.services.alerts.pipeline import run_expiry_alert_job


def _parse_date_arg(value: str | None) -> date | None:
    if not value:
        return None
    return datetime.strptime(value, "%Y-%m-%d").date()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the vehicle expiry alert job")
    parser.add_argument("--date", dest="run_date", help="Evaluate as of YYYY-MM-DD (default: today in ALERT_TIMEZONE)")
    parser.add_argument("--dry-run", action="store_true", help="Evaluate and deduplicate only; send and write nothing")
    args = parser.parse_args()

    summary = asyncio.run(run_expiry_alert_job(dry_run=args.dry_run, today=_parse_date_arg(args.run_date)))
    print(json.dumps(summary, indent=2, default=str))


if __name__ == "__main__":
    main()
