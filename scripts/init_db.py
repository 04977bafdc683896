# scripts/init_db.py
"""
Create the schema and seed payment terms / payment plans.

    python -m scripts.init_db          # create missing tables
    python -m scripts.init_db --drop   # start from an empty database
"""

import argparse
import logging

from app.config import get_settings
from app.db.engine import get_engine
from app.db.seed import init_db
from app.logging_config import configure_logging

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--drop", action="store_true", help="drop all tables first")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    init_db(get_engine(), drop=args.drop)
    logger.info("DB schema created at %s", settings.db_url)


if __name__ == "__main__":
    main()
