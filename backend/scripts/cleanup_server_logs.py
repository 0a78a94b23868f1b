#!/usr/bin/env python3
"""
Server Log Cleanup Script
Deletes operational log rows older than the retention window (90 days).
Meant to be run once a day by an external scheduler (cron, systemd timer).

Usage:
    python -m scripts.cleanup_server_logs [retention_days]

Example:
    DATABASE_URL=sqlite:///./tracker.db python -m scripts.cleanup_server_logs
"""
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError

from tracker.config import DEFAULT_DATABASE_URL
from tracker.database import build_engine, build_session_factory, init_db
from tracker.logging_setup import configure_logging
from tracker.services.server_logs import RETENTION_DAYS, ServerLogService


def run_cleanup(database_url: str, retention_days: int = RETENTION_DAYS) -> bool:
    """Purge expired server logs and print the report."""
    engine = build_engine(database_url)
    # Ensure tables exist
    init_db(engine)

    db = build_session_factory(engine)()
    try:
        service = ServerLogService(db)
        if retention_days == RETENTION_DAYS:
            report = service.run_daily_cleanup()
            print(report.summary())
            return not report.errors

        deleted = service.purge_older_than(retention_days)
        print(f"Server Logs Deleted: {deleted} records ({retention_days}-day retention)")
        return True
    except SQLAlchemyError as e:
        print(f"Error during cleanup: {e}")
        return False
    finally:
        db.close()
        engine.dispose()


def main():
    if len(sys.argv) > 2:
        print(__doc__)
        sys.exit(1)

    retention_days = RETENTION_DAYS
    if len(sys.argv) == 2:
        try:
            retention_days = int(sys.argv[1])
        except ValueError:
            print("Error: retention_days must be an integer.")
            sys.exit(1)
        if retention_days < 1:
            print("Error: retention_days must be at least 1.")
            sys.exit(1)

    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    database_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    success = run_cleanup(database_url, retention_days)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
