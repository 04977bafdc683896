# scripts/run_jobs.py
"""
Run scheduler jobs once, for cron or manual use.

    python -m scripts.run_jobs                   # every job
    python -m scripts.run_jobs reminders overdue # only these
"""

import argparse
import logging

from app.config import get_settings
from app.db.engine import get_engine
from app.db.seed import init_db
from app.logging_config import configure_logging
from app.services.container import build_services

logger = logging.getLogger(__name__)

JOBS = ("reminders", "generation", "overdue", "late_fees", "cleanup")


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("jobs", nargs="*", help=f"jobs to run: {', '.join(JOBS)} (default: all)")
    args = parser.parse_args()
    unknown = [name for name in args.jobs if name not in JOBS]
    if unknown:
        parser.error(f"unknown job(s): {', '.join(unknown)}")

    settings = get_settings()
    configure_logging(settings.log_level)
    engine = get_engine()
    init_db(engine)
    scheduler = build_services(engine, settings=settings).scheduler

    failed = 0
    for name in args.jobs or JOBS:
        result = scheduler.jobs[name]()
        logger.info("%s: %s", name, result.summary())
        failed += result.failed
    raise SystemExit(1 if failed else 0)


if __name__ == "__main__":
    main()
