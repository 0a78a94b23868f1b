"""
Launch Tracker - SQLAlchemy ORM Models
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Date, DateTime, Float, Index, Integer, String, Text

from ..database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops the offset on read; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class PredictionDB(Base):
    """
    One row per accepted submission.

    Dual uniqueness on cookie_id and ip_hash is enforced by the database, so
    two racing submissions from one identity resolve to a single row.
    """
    __tablename__ = "predictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    predicted_date = Column(Date, nullable=False, index=True)
    submitted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    ip_hash = Column(String(64), nullable=False, unique=True)
    cookie_id = Column(String(36), nullable=False, unique=True)
    user_agent = Column(Text, nullable=True)  # HTML-entity encoded
    weight = Column(Float, nullable=False, default=1.0)

    def to_dict(self) -> dict:
        return {
            "predicted_date": self.predicted_date.isoformat(),
            "submitted_at": as_utc(self.submitted_at).isoformat() if self.submitted_at else None,
            "updated_at": as_utc(self.updated_at).isoformat() if self.updated_at else None,
            "weight": self.weight,
        }


class ServerLogDB(Base):
    """Operational log for diagnostics; rows older than 90 days are purged."""
    __tablename__ = "server_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    level = Column(String(10), nullable=False)  # INFO, WARN, ERROR
    message = Column(Text, nullable=False)
    ip_hash = Column(String(64), nullable=True)
    request_path = Column(String(255), nullable=True)
    request_method = Column(String(10), nullable=True)
    status_code = Column(Integer, nullable=True)
    error_details = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_server_logs_created_at", "created_at"),
        Index("idx_server_logs_level", "level"),
    )


class CapacityCounterDB(Base):
    """Accepted-request counter, one row per UTC day."""
    __tablename__ = "capacity_counters"

    day_key = Column(String(10), primary_key=True)  # YYYY-MM-DD (UTC)
    request_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
