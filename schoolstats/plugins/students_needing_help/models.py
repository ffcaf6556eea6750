"""
SQLAlchemy models for students needing help: one open record per flagged student plus class/teacher links.
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text

from schoolstats.core.db import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StudentNeedingHelp(Base):
    """At-risk record. Stays open (is_resolved false) while the student keeps matching a rule."""
    __tablename__ = "students_needing_help"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reasons = Column(JSON, nullable=False)  # list of reason strings
    needs_help_since = Column(DateTime(timezone=False), nullable=False)
    days_needing_help = Column(Integer, default=1, nullable=False)
    overdue_assignments = Column(Integer, default=0, nullable=False)
    average_score = Column(Float, default=0.0, nullable=False)
    completion_rate = Column(Float, default=0.0, nullable=False)
    severity = Column(String(16), nullable=False)  # CRITICAL | WARNING | RECENT
    is_resolved = Column(Boolean, default=False, nullable=False, index=True)
    resolved_at = Column(DateTime(timezone=False), nullable=True)
    teacher_notes = Column(Text, nullable=True)
    actions_taken = Column(JSON, nullable=True)  # list of strings
    last_updated = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class StudentNeedingHelpClass(Base):
    __tablename__ = "students_needing_help_classes"

    help_id = Column(Integer, ForeignKey("students_needing_help.id", ondelete="CASCADE"), primary_key=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True)


class StudentNeedingHelpTeacher(Base):
    __tablename__ = "students_needing_help_teachers"

    help_id = Column(Integer, ForeignKey("students_needing_help.id", ondelete="CASCADE"), primary_key=True)
    teacher_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
