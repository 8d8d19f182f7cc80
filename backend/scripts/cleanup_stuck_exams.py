#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.orm import Session

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ophthexam.core.config import get_settings
from ophthexam.core.logging import configure_logging
from ophthexam.db.session import engine
from ophthexam.services.exams import reclaim_stuck_exams


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reset exams stuck in 'analyzing' back to 'pending'.")
    parser.add_argument("--dry-run", action="store_true", help="Report stuck exams and roll back.")
    parser.add_argument(
        "--threshold-minutes",
        type=int,
        default=None,
        help="Minutes without progress before an exam counts as stuck (defaults to settings).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    cfg = get_settings()
    configure_logging(cfg)
    threshold = args.threshold_minutes or cfg.stuck_exam_threshold_minutes

    with Session(engine) as db:
        result = reclaim_stuck_exams(db, threshold_minutes=threshold, commit=not args.dry_run)
        if args.dry_run:
            db.rollback()

    payload = {
        "success": True,
        "cleaned_count": result.cleaned_count,
        "exam_ids": result.exam_ids,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if args.dry_run:
        payload["dry_run"] = True
    print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
