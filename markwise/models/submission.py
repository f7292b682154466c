# markwise/models/submission.py
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Float,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from markwise.db.base_class import Base


class SubmissionStatus(str, Enum):
    """PENDING -> PROCESSING -> GRADED | FAILED, never back to PENDING."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    GRADED = "GRADED"
    FAILED = "FAILED"


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint("assessment_id", "student_id", name="uq_submission_assessment_student"),
    )

    id = Column(Integer, primary_key=True, index=True)

    assessment_id = Column(Integer, ForeignKey("assessments.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(String(20), nullable=False, default=SubmissionStatus.PENDING.value, index=True)
    error_reason = Column(Text, nullable=True)

    # automated grading
    score = Column(Integer, nullable=True)
    max_score = Column(Integer, nullable=False)
    extracted_text = Column(Text, nullable=True)
    feedback = Column(Text, nullable=True)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    # teacher adjustment; original_score is written once, on the first adjustment
    original_score = Column(Integer, nullable=True)
    adjusted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    adjustment_reason = Column(Text, nullable=True)
    adjusted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    assessment = relationship("Assessment", back_populates="submissions")
    files = relationship(
        "SubmissionFile",
        back_populates="submission",
        order_by="SubmissionFile.page_index",
        cascade="all, delete-orphan",
    )
    question_results = relationship(
        "QuestionResult",
        back_populates="submission",
        cascade="all, delete-orphan",
    )


class SubmissionFile(Base):
    __tablename__ = "submission_files"

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(
        Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    page_index = Column(Integer, nullable=False, default=0)
    location = Column(String(1024), nullable=False)
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    submission = relationship("Submission", back_populates="files")


class QuestionResult(Base):
    __tablename__ = "question_results"
    __table_args__ = (
        UniqueConstraint("submission_id", "question_id", name="uq_result_submission_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(
        Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)

    awarded_marks = Column(Integer, nullable=False)
    confidence = Column(Float, nullable=True)  # 0-100
    ocr_text = Column(Text, nullable=True)
    feedback = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    submission = relationship("Submission", back_populates="question_results")
    question = relationship("Question")
