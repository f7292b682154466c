"""
Shared fixtures: a file-backed SQLite database per test, users, a class
with one enrolled student and an ACTIVE two-question assessment.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from markwise.db.base import Base
from markwise.models.assessment import (
    Assessment,
    AssessmentStatus,
    MarkSchemePoint,
    Question,
    Strictness,
)
from markwise.models.classroom import Classroom, Enrollment
from markwise.models.user import User
from markwise.services.file_storage import LocalFileStore
from markwise.services.grading import KeywordGrader
from markwise.services.grading_pipeline import SubmissionPipeline
from markwise.services.storage import SqlAlchemySubmissionStore
from markwise.services.text_extraction import StubTextExtractor, TextExtractionService

# answers Q1 with the two criteria worth 2 and 3 marks, leaves Q2 blank
SCENARIO_TRANSCRIPT = """Q1. Apply the power rule to get the derivative 2x.

Q2.
"""


@pytest.fixture(scope="function")
def engine(tmp_path):
    # file-backed so sessions opened in worker threads see the same data
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Create a test database session."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def _make_user(db, email, name, role):
    user = User(
        email=email,
        # Pre-hashed password to avoid running bcrypt in tests
        password_hash="$2b$12$hashed_password_001",
        name=name,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_teacher(db_session):
    return _make_user(db_session, "teacher@test.com", "Test Teacher", "teacher")


@pytest.fixture
def other_teacher(db_session):
    return _make_user(db_session, "other@test.com", "Other Teacher", "teacher")


@pytest.fixture
def test_student(db_session):
    return _make_user(db_session, "student@test.com", "Test Student", "student")


@pytest.fixture
def test_classroom(db_session, test_teacher, test_student):
    classroom = Classroom(name="Calculus 101", code="CALC01", teacher_id=test_teacher.id)
    db_session.add(classroom)
    db_session.flush()
    db_session.add(Enrollment(class_id=classroom.id, student_id=test_student.id))
    db_session.commit()
    db_session.refresh(classroom)
    return classroom


@pytest.fixture
def test_assessment(db_session, test_classroom):
    """Q1 (max 5, criteria 2+3+2) and Q2 (max 10), FAIR strictness."""
    assessment = Assessment(
        class_id=test_classroom.id,
        title="Differentiation quiz",
        strictness=Strictness.FAIR.value,
        total_marks=15,
        status=AssessmentStatus.ACTIVE.value,
        questions=[
            Question(
                sequence=1,
                label="1",
                prompt="Differentiate x^2.",
                max_marks=5,
                criteria=[
                    MarkSchemePoint(position=0, description="apply power rule", marks=2),
                    MarkSchemePoint(position=1, description="derivative 2x", marks=3),
                    MarkSchemePoint(position=2, description="substitute point coordinates", marks=2),
                ],
            ),
            Question(
                sequence=2,
                label="2",
                prompt="Integrate 3x^2 from 0 to 1.",
                max_marks=10,
                criteria=[
                    MarkSchemePoint(position=0, description="antiderivative x^3", marks=4),
                    MarkSchemePoint(position=1, description="evaluate limits result 1", marks=6),
                ],
            ),
        ],
    )
    db_session.add(assessment)
    db_session.commit()
    db_session.refresh(assessment)
    return assessment


@pytest.fixture
def store(session_factory):
    return SqlAlchemySubmissionStore(session_factory)


@pytest.fixture
def file_store(tmp_path):
    return LocalFileStore(tmp_path / "uploads")


@pytest.fixture
def make_pipeline(store, file_store):
    def make(grader=None, extractor=None, timeout_seconds=30):
        return SubmissionPipeline(
            store,
            file_store,
            TextExtractionService(extractor or StubTextExtractor()),
            grader or KeywordGrader(),
            timeout_seconds=timeout_seconds,
        )

    return make


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline()
