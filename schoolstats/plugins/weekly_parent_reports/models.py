"""
SQLAlchemy model for the weekly parent report log: one row per student per week a report was attempted.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, JSON, String, Text

from schoolstats.core.db import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ReportStatus:
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class WeeklyParentReport(Base):
    __tablename__ = "weekly_parent_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    week_start = Column(Date, nullable=False)  # Sunday
    week_end = Column(Date, nullable=False)  # Saturday
    recipient = Column(String(255), nullable=True)
    status = Column(String(16), nullable=False)  # sent | failed | skipped
    summary = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
