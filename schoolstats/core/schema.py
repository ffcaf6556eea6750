"""
LMS tables read by the pipeline: users, classes, assignments, questions, progress, activity log.
The web application owns these rows; the pipeline only flips assignments active and writes
activity-log and progress rows through the services.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    or_,
    select,
)
from sqlalchemy.orm import Session

from schoolstats.core.db import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole:
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


class AssignmentType:
    CLASS = "CLASS"
    INDIVIDUAL = "INDIVIDUAL"


class ActivityLogType:
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    SYSTEM_MAINTENANCE = "SYSTEM_MAINTENANCE"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, unique=True)
    email = Column(String(255), nullable=True)
    parent_email = Column(String(255), nullable=True)
    role = Column(String(16), nullable=False, index=True)  # ADMIN | TEACHER | STUDENT
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class SchoolClass(Base):
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class UserClass(Base):
    """Class membership; both students and teachers are members."""
    __tablename__ = "user_classes"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True)


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    topic = Column(String(255), nullable=True)
    type = Column(String(16), nullable=True)  # CLASS | INDIVIDUAL
    teacher_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    due_date = Column(DateTime(timezone=False), nullable=True)
    scheduled_publish_at = Column(DateTime(timezone=False), nullable=True)
    published_at = Column(DateTime(timezone=False), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class ClassAssignment(Base):
    __tablename__ = "class_assignments"

    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True)


class UserAssignment(Base):
    """Individually assigned work."""
    __tablename__ = "user_assignments"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True)


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=True)


class ProgressRecord(Base):
    """One row per (student, assignment, question) attempt; a re-submission overwrites it."""
    __tablename__ = "student_assignment_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=True)
    is_complete = Column(Boolean, default=False, nullable=False)
    is_correct = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("student_id", "assignment_id", "question_id", name="uq_progress_attempt"),
    )


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(64), nullable=False)
    action = Column(String(255), nullable=True)
    details = Column(JSON, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="SET NULL"), nullable=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False, index=True)
    published_at = Column(DateTime(timezone=False), nullable=True)


# ----- Shared queries -----

def get_user_ids_by_role(session: Session, role: str) -> List[int]:
    return list(session.execute(select(User.id).where(User.role == role).order_by(User.id)).scalars().all())


def get_class_student_ids(session: Session, class_id: int) -> List[int]:
    """Students (not teachers) who are members of the class."""
    stmt = (
        select(UserClass.user_id)
        .join(User, User.id == UserClass.user_id)
        .where(UserClass.class_id == class_id, User.role == UserRole.STUDENT)
        .order_by(UserClass.user_id)
    )
    return list(session.execute(stmt).scalars().all())


def get_user_class_ids(session: Session, user_id: int) -> List[int]:
    stmt = select(UserClass.class_id).where(UserClass.user_id == user_id).order_by(UserClass.class_id)
    return list(session.execute(stmt).scalars().all())


def get_assignment_student_ids(session: Session, assignment_id: int) -> Set[int]:
    """Students in scope for an assignment: members of its classes plus individually assigned students."""
    class_students = (
        select(UserClass.user_id)
        .join(ClassAssignment, ClassAssignment.class_id == UserClass.class_id)
        .join(User, User.id == UserClass.user_id)
        .where(ClassAssignment.assignment_id == assignment_id, User.role == UserRole.STUDENT)
    )
    individual = (
        select(UserAssignment.user_id)
        .join(User, User.id == UserAssignment.user_id)
        .where(UserAssignment.assignment_id == assignment_id, User.role == UserRole.STUDENT)
    )
    ids = set(session.execute(class_students).scalars().all())
    ids.update(session.execute(individual).scalars().all())
    return ids


def get_visible_assignments(session: Session, student_id: int, active_only: bool = True) -> List[Assignment]:
    """Assignments visible to a student: union of individually assigned and class-assigned work."""
    class_ids = select(UserClass.class_id).where(UserClass.user_id == student_id)
    via_class = select(ClassAssignment.assignment_id).where(ClassAssignment.class_id.in_(class_ids))
    via_user = select(UserAssignment.assignment_id).where(UserAssignment.user_id == student_id)
    stmt = select(Assignment).where(or_(Assignment.id.in_(via_class), Assignment.id.in_(via_user)))
    if active_only:
        stmt = stmt.where(Assignment.is_active.is_(True))
    return list(session.execute(stmt.order_by(Assignment.id)).scalars().all())


def get_question_counts(session: Session, assignment_ids: Iterable[int]) -> Dict[int, int]:
    """assignment_id -> number of questions (0 for assignments without questions)."""
    ids = list(assignment_ids)
    counts = {aid: 0 for aid in ids}
    if not ids:
        return counts
    rows = session.execute(select(Question.assignment_id).where(Question.assignment_id.in_(ids))).scalars().all()
    for aid in rows:
        counts[aid] += 1
    return counts


def get_progress(
    session: Session,
    student_id: Optional[int] = None,
    assignment_ids: Optional[Iterable[int]] = None,
) -> List[ProgressRecord]:
    stmt = select(ProgressRecord)
    if student_id is not None:
        stmt = stmt.where(ProgressRecord.student_id == student_id)
    if assignment_ids is not None:
        ids = list(assignment_ids)
        if not ids:
            return []
        stmt = stmt.where(ProgressRecord.assignment_id.in_(ids))
    return list(session.execute(stmt.order_by(ProgressRecord.id)).scalars().all())
