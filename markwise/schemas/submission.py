# markwise/schemas/submission.py
from pydantic import BaseModel
from datetime import datetime


class SubmissionFilePublic(BaseModel):
    page_index: int
    original_name: str
    mime_type: str

    model_config = {"from_attributes": True}


class QuestionResultPublic(BaseModel):
    question_id: int
    awarded_marks: int
    confidence: float | None = None
    ocr_text: str | None = None
    feedback: str | None = None

    model_config = {"from_attributes": True}


class SubmissionPublic(BaseModel):
    """What the student sees."""
    id: int
    assessment_id: int
    student_id: int
    status: str  # PENDING / PROCESSING / GRADED / FAILED
    score: int | None = None
    max_score: int
    feedback: str | None = None
    error_reason: str | None = None
    graded_at: datetime | None = None
    adjustment_reason: str | None = None
    files: list[SubmissionFilePublic] = []
    question_results: list[QuestionResultPublic] = []

    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class SubmissionDetail(SubmissionPublic):
    """What the class teacher sees."""
    extracted_text: str | None = None
    original_score: int | None = None
    adjusted_by_id: int | None = None
    adjusted_at: datetime | None = None
    processing_started_at: datetime | None = None


class SubmissionUploadResult(BaseModel):
    submission_id: int
    status: str
    score: int | None = None
    max_score: int | None = None
    error_reason: str | None = None
