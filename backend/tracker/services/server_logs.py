"""
Server Log Service

Writes the operational log relation and purges it on a 90-day rolling
window. The purge is triggered externally (scripts/cleanup_server_logs.py).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.db_models import ServerLogDB

logger = logging.getLogger(__name__)

RETENTION_DAYS = 90
MAX_DETAIL_LENGTH = 2000


@dataclass
class CleanupReport:
    timestamp: str
    server_logs_deleted: int = 0
    errors: List[str] = field(default_factory=list)

    def summary(self) -> str:
        lines = [
            f"Data Retention Cleanup Report - {self.timestamp}",
            f"Server Logs Deleted: {self.server_logs_deleted} records ({RETENTION_DAYS}-day retention)",
            "Predictions: No cleanup (retained until owner erasure)",
            "Rate Limit Data: window-based expiration (60 seconds)",
            "Cache Data: TTL-based expiration",
        ]
        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
            for index, error in enumerate(self.errors, start=1):
                lines.append(f"  {index}. {error}")
        return "\n".join(lines)


class ServerLogService:
    """Operational log writer and retention purge."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        level: str,
        message: str,
        request_path: Optional[str] = None,
        request_method: Optional[str] = None,
        status_code: Optional[int] = None,
        ip_hash: Optional[str] = None,
        error_details: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """
        Append one row. Diagnostics must not break the request they describe,
        so a failed write is logged and reported as False.
        """
        entry = ServerLogDB(
            level=level,
            message=message[:MAX_DETAIL_LENGTH],
            request_path=request_path,
            request_method=request_method,
            status_code=status_code,
            ip_hash=ip_hash,
            error_details=(error_details or None) and error_details[:MAX_DETAIL_LENGTH],
            user_agent=user_agent,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not write server log entry: {e}")
            return False
        return True

    def purge_older_than(self, days: int = RETENTION_DAYS, now: Optional[datetime] = None) -> int:
        """Delete rows created more than `days` ago; returns the count."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        try:
            deleted = self.db.query(ServerLogDB).filter(
                ServerLogDB.created_at < cutoff
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Server logs cleanup failed (cutoff={cutoff.isoformat()})")
            raise
        logger.info(f"Server logs cleanup completed: deleted={deleted} cutoff={cutoff.isoformat()}")
        return deleted

    def run_daily_cleanup(self, now: Optional[datetime] = None) -> CleanupReport:
        report = CleanupReport(timestamp=(now or datetime.now(timezone.utc)).isoformat())
        try:
            report.server_logs_deleted = self.purge_older_than(RETENTION_DAYS, now=now)
        except SQLAlchemyError as e:
            report.errors.append(f"Server logs cleanup failed: {e}")
        logger.info(
            f"Daily cleanup completed: deleted={report.server_logs_deleted} errors={len(report.errors)}"
        )
        return report
