#!/usr/bin/env python3
"""Run the daily sync + detection job without going through HTTP."""
import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from opswatch.config import settings
from opswatch.database import SessionLocal, init_db
from opswatch.detection.engine import DetectionEngine
from opswatch.pipeline.daily import run_daily


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--customer", type=int, action="append", help="Only run detectors for this customer id (repeatable)")
    parser.add_argument("--type", dest="types", action="append", help="Only run this detector type (repeatable)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    init_db()
    db = SessionLocal()
    try:
        if args.customer or args.types:
            summary = DetectionEngine(db, settings).run_all(args.customer, args.types)
            summary["ok"] = not summary["errors"]
        else:
            summary = run_daily(db, settings)
    finally:
        db.close()
    print(json.dumps(summary, indent=2, default=str))
    return 0 if summary["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
