"""
SQLAlchemy models for pre-aggregated statistics: one current row per entity, plus performance metrics.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, JSON, String, UniqueConstraint

from schoolstats.core.db import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AssignmentStats(Base):
    __tablename__ = "assignment_stats"

    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True)
    total_students = Column(Integer, default=0, nullable=False)
    completed_students = Column(Integer, default=0, nullable=False)
    in_progress_students = Column(Integer, default=0, nullable=False)
    not_started_students = Column(Integer, default=0, nullable=False)
    completion_rate = Column(Float, default=0.0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    total_questions = Column(Integer, default=0, nullable=False)
    total_answers = Column(Integer, default=0, nullable=False)
    total_correct_answers = Column(Integer, default=0, nullable=False)
    accuracy_rate = Column(Float, default=0.0, nullable=False)
    last_updated = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class StudentStats(Base):
    __tablename__ = "student_stats"

    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    total_assignments = Column(Integer, default=0, nullable=False)
    completed_assignments = Column(Integer, default=0, nullable=False)
    in_progress_assignments = Column(Integer, default=0, nullable=False)
    not_started_assignments = Column(Integer, default=0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    total_questions = Column(Integer, default=0, nullable=False)
    total_answers = Column(Integer, default=0, nullable=False)
    total_correct_answers = Column(Integer, default=0, nullable=False)
    accuracy_rate = Column(Float, default=0.0, nullable=False)
    completion_rate = Column(Float, default=0.0, nullable=False)
    last_activity_date = Column(DateTime(timezone=False), nullable=True)
    last_updated = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class ClassStats(Base):
    __tablename__ = "class_stats"

    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True)
    total_students = Column(Integer, default=0, nullable=False)
    total_assignments = Column(Integer, default=0, nullable=False)
    active_assignments = Column(Integer, default=0, nullable=False)
    average_completion = Column(Float, default=0.0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    total_questions = Column(Integer, default=0, nullable=False)
    total_answers = Column(Integer, default=0, nullable=False)
    total_correct_answers = Column(Integer, default=0, nullable=False)
    accuracy_rate = Column(Float, default=0.0, nullable=False)
    active_students = Column(Integer, default=0, nullable=False)
    students_needing_help = Column(Integer, default=0, nullable=False)
    last_activity_date = Column(DateTime(timezone=False), nullable=True)
    last_updated = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class TeacherStats(Base):
    __tablename__ = "teacher_stats"

    teacher_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    total_assignments = Column(Integer, default=0, nullable=False)
    total_classes = Column(Integer, default=0, nullable=False)
    total_students = Column(Integer, default=0, nullable=False)
    average_class_completion = Column(Float, default=0.0, nullable=False)
    average_class_score = Column(Float, default=0.0, nullable=False)
    total_questions = Column(Integer, default=0, nullable=False)
    active_assignments = Column(Integer, default=0, nullable=False)
    scheduled_assignments = Column(Integer, default=0, nullable=False)
    last_updated = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class SchoolStats(Base):
    """One row per calendar day; the hourly sweep keeps today's row current."""
    __tablename__ = "school_stats"

    date = Column(Date, primary_key=True)
    total_users = Column(Integer, default=0, nullable=False)
    total_teachers = Column(Integer, default=0, nullable=False)
    total_students = Column(Integer, default=0, nullable=False)
    total_classes = Column(Integer, default=0, nullable=False)
    total_assignments = Column(Integer, default=0, nullable=False)
    active_assignments = Column(Integer, default=0, nullable=False)
    scheduled_assignments = Column(Integer, default=0, nullable=False)
    completed_assignments = Column(Integer, default=0, nullable=False)
    completed_student_assignments = Column(Integer, default=0, nullable=False)
    in_progress_student_assignments = Column(Integer, default=0, nullable=False)
    not_started_student_assignments = Column(Integer, default=0, nullable=False)
    average_completion_rate = Column(Float, default=0.0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    total_questions = Column(Integer, default=0, nullable=False)
    total_answers = Column(Integer, default=0, nullable=False)
    total_correct_answers = Column(Integer, default=0, nullable=False)
    daily_active_students = Column(Integer, default=0, nullable=False)
    students_needing_help = Column(Integer, default=0, nullable=False)
    last_updated = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class PerformanceMetric(Base):
    """Time-series point, e.g. completion_rate of a class for one hour."""
    __tablename__ = "performance_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    metric_type = Column(String(64), nullable=False)  # completion_rate | average_score
    entity_type = Column(String(32), nullable=False)  # school | class
    entity_id = Column(Integer, nullable=True)  # null for school
    time_frame = Column(String(16), nullable=False)  # HOURLY | DAILY
    date = Column(Date, nullable=False, index=True)
    hour = Column(Integer, nullable=True)
    value = Column(Float, nullable=False)
    additional_data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("metric_type", "entity_type", "entity_id", "time_frame", "date", "hour", name="uq_metric_point"),
    )
