from datetime import datetime, timedelta

import pytest
import yaml
from fastapi.testclient import TestClient

from schoolstats.api import create_app
from schoolstats.core.app import PipelineApp
from schoolstats.core.db import close_db, init_db, session_scope
from schoolstats.core.schema import (
    Assignment,
    AssignmentType,
    ClassAssignment,
    ProgressRecord,
    Question,
    SchoolClass,
    User,
    UserAssignment,
    UserClass,
    UserRole,
)

# A Wednesday
NOW = datetime(2024, 3, 13, 12, 0)


class Factory:
    """Creates LMS rows, each in its own committed session; returns ids."""

    def __init__(self):
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def user(self, role=UserRole.STUDENT, username=None, parent_email=None):
        with session_scope() as session:
            user = User(
                username=username or f"{role.lower()}{self._next()}",
                email=None,
                parent_email=parent_email,
                role=role,
                created_at=NOW - timedelta(days=60),
            )
            session.add(user)
            session.flush()
            return user.id

    def student(self, **kwargs):
        return self.user(UserRole.STUDENT, **kwargs)

    def teacher(self, **kwargs):
        return self.user(UserRole.TEACHER, **kwargs)

    def school_class(self, members=(), name=None):
        with session_scope() as session:
            school_class = SchoolClass(name=name or f"Class {self._next()}")
            session.add(school_class)
            session.flush()
            for user_id in members:
                session.add(UserClass(user_id=user_id, class_id=school_class.id))
            return school_class.id

    def assignment(
        self,
        teacher_id=None,
        classes=(),
        students=(),
        questions=2,
        due_date=None,
        is_active=True,
        published_at=NOW - timedelta(days=30),
        scheduled_publish_at=None,
    ):
        """Returns (assignment_id, [question_ids])."""
        with session_scope() as session:
            assignment = Assignment(
                topic=f"Topic {self._next()}",
                type=AssignmentType.CLASS if classes else AssignmentType.INDIVIDUAL,
                teacher_id=teacher_id,
                due_date=due_date,
                scheduled_publish_at=scheduled_publish_at,
                published_at=published_at,
                is_active=is_active,
                created_at=NOW - timedelta(days=30),
            )
            session.add(assignment)
            session.flush()
            for class_id in classes:
                session.add(ClassAssignment(class_id=class_id, assignment_id=assignment.id))
            for student_id in students:
                session.add(UserAssignment(user_id=student_id, assignment_id=assignment.id))
            question_ids = []
            for i in range(questions):
                question = Question(assignment_id=assignment.id, text=f"Question {i + 1}")
                session.add(question)
                session.flush()
                question_ids.append(question.id)
            return assignment.id, question_ids

    def answer(self, student_id, assignment_id, question_id, correct=True, at=NOW - timedelta(hours=1)):
        with session_scope() as session:
            session.add(ProgressRecord(
                student_id=student_id,
                assignment_id=assignment_id,
                question_id=question_id,
                is_complete=True,
                is_correct=correct,
                created_at=at,
                updated_at=at,
            ))

    def answers(self, student_id, assignment_id, question_ids, correct_count, at=NOW - timedelta(hours=1)):
        for i, question_id in enumerate(question_ids):
            self.answer(student_id, assignment_id, question_id, correct=i < correct_count, at=at)


@pytest.fixture
def db(tmp_path):
    close_db()
    init_db(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    yield
    close_db()


@pytest.fixture
def factory(db):
    return Factory()


@pytest.fixture
def pipeline_app(tmp_path, db):
    config_file = tmp_path / "config.yaml"
    tasks = {
        "publish-assignments": {"enable": True, "interval_seconds": 60},
        "statistics": {"enable": True, "schedule": "hourly"},
        "students-needing-help": {"enable": True, "schedule": "hourly"},
        "dashboard-snapshot": {"enable": True, "schedule_time": "06:00", "retention_days": 30},
        "weekly-parent-reports": {"enable": True, "weekday": "sunday", "schedule_time": "18:00"},
    }
    config_file.write_text(yaml.dump({
        "database": {"path": str(tmp_path / "test.db")},
        "logging": {"level": "INFO"},
        "api": {"enabled": False},
        "tasks": tasks,
    }))
    app = PipelineApp(config_path=str(config_file), watch_config=False)
    yield app
    app.shutdown()


@pytest.fixture
def client(pipeline_app):
    return TestClient(create_app(pipeline_app))
