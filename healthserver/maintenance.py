import argparse
import logging
import sys
from datetime import timedelta

from .config import ALERT_RETENTION_DAYS, LOG_LEVEL, database_path
from .database import AlertStore, utcnow
from .errors import PersistenceError

logger = logging.getLogger(__name__)


def cleanup_old_resolved_alerts(store, days_to_keep=ALERT_RETENTION_DAYS, now=None) -> int:
    """
    Deletes alerts that were resolved more than ``days_to_keep`` days ago.
    Open alerts are never touched.
    """
    cutoff = (now or utcnow()) - timedelta(days=days_to_keep)
    deleted = store.delete_resolved_before(cutoff)
    logger.info("Cleaned up %s old resolved alerts", deleted)
    return deleted


def main(argv=None):
    parser = argparse.ArgumentParser(description="Delete resolved alerts past the retention window.")
    parser.add_argument("--days", type=int, default=ALERT_RETENTION_DAYS, help="Days to keep resolved alerts.")
    parser.add_argument("--database", default=database_path(), help="Path to the sqlite database.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    store = AlertStore(args.database)
    try:
        store.create_tables()
        cleanup_old_resolved_alerts(store, days_to_keep=args.days)
    except PersistenceError as e:
        logger.error("Retention sweep failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
