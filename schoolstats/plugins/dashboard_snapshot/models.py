"""
SQLAlchemy model for dashboard snapshots: append-only copies of school-wide numbers for trend charts.
"""
from sqlalchemy import Column, DateTime, Integer, String

from schoolstats.core.db import Base


class SnapshotType:
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    ALL = (DAILY, WEEKLY, MONTHLY)


class DashboardSnapshot(Base):
    """Never updated after insert; only the retention sweep deletes rows."""
    __tablename__ = "dashboard_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=False), nullable=False, index=True)
    snapshot_type = Column(String(16), nullable=False)  # daily | weekly | monthly
    total_classes = Column(Integer, default=0, nullable=False)
    total_teachers = Column(Integer, default=0, nullable=False)
    total_students = Column(Integer, default=0, nullable=False)
    total_assignments = Column(Integer, default=0, nullable=False)  # published
    class_assignments = Column(Integer, default=0, nullable=False)
    individual_assignments = Column(Integer, default=0, nullable=False)
    average_completion_rate = Column(Integer, default=0, nullable=False)
    average_success_rate = Column(Integer, default=0, nullable=False)
    students_needing_attention = Column(Integer, default=0, nullable=False)
    recent_activities = Column(Integer, default=0, nullable=False)  # activity-log rows in the last 24h
