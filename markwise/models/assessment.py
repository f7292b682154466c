# markwise/models/assessment.py
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from markwise.db.base_class import Base


class Strictness(str, Enum):
    """How literally a criterion must be matched by the student's answer."""
    STRICT = "STRICT"
    FAIR = "FAIR"
    EASY = "EASY"


class AssessmentStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    strictness = Column(String(10), nullable=False, default=Strictness.FAIR.value)
    total_marks = Column(Integer, nullable=False)
    status = Column(String(10), nullable=False, default=AssessmentStatus.DRAFT.value, index=True)

    # text of an uploaded mark-scheme document, extracted once
    mark_scheme_text = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    classroom = relationship("Classroom", back_populates="assessments")
    questions = relationship(
        "Question",
        back_populates="assessment",
        order_by="Question.sequence",
        cascade="all, delete-orphan",
    )
    submissions = relationship("Submission", back_populates="assessment")

    @property
    def has_mark_scheme_document(self) -> bool:
        return bool(self.mark_scheme_text)


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        UniqueConstraint("assessment_id", "sequence", name="uq_question_assessment_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    assessment_id = Column(
        Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True
    )

    sequence = Column(Integer, nullable=False)
    # label as printed on the paper, e.g. "1", "2a"; defaults to the sequence number
    label = Column(String(20), nullable=False)
    prompt = Column(Text, nullable=False)
    max_marks = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    assessment = relationship("Assessment", back_populates="questions")
    criteria = relationship(
        "MarkSchemePoint",
        back_populates="question",
        order_by="MarkSchemePoint.position",
        cascade="all, delete-orphan",
    )


class MarkSchemePoint(Base):
    __tablename__ = "mark_scheme_points"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(
        Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=False)
    marks = Column(Integer, nullable=False)

    question = relationship("Question", back_populates="criteria")
