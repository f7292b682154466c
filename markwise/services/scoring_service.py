# markwise/services/scoring_service.py
"""
Score Adjustment Ledger
Teacher overrides of automated scores, with the automated value preserved.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from markwise.core.exceptions import (
    PermissionDeniedError,
    ScoreAdjustmentError,
    SubmissionInputError,
    SubmissionStateError,
)
from markwise.models.assessment import Assessment
from markwise.models.classroom import Classroom
from markwise.models.submission import QuestionResult, Submission, SubmissionStatus
from markwise.models.user import ROLE_TEACHER, User
from markwise.schemas.score import ScoreAdjustment


def teacher_owns_submission(db: Session, *, teacher: User, submission: Submission) -> bool:
    if teacher.role != ROLE_TEACHER:
        return False
    owner_id = (
        db.query(Classroom.teacher_id)
        .join(Assessment, Assessment.class_id == Classroom.id)
        .filter(Assessment.id == submission.assessment_id)
        .scalar()
    )
    return owner_id == teacher.id


def adjust_submission_score(
    db: Session,
    *,
    submission_id: int,
    teacher: User,
    adjustment: ScoreAdjustment,
) -> Submission:
    """
    Set a new score on a GRADED submission.

    The automated score is copied to ``original_score`` on the first
    adjustment only; later adjustments overwrite score, reason, adjuster and
    time but never ``original_score``. Per-question results are left as the
    grader wrote them.

    Every check runs before anything is written.
    """
    submission: Optional[Submission] = db.get(Submission, submission_id)
    if submission is None:
        raise SubmissionInputError(f"Submission {submission_id} not found")

    if not teacher_owns_submission(db, teacher=teacher, submission=submission):
        raise PermissionDeniedError("Only the class teacher can adjust this score")

    if submission.status != SubmissionStatus.GRADED.value:
        raise SubmissionStateError(
            f"Only graded submissions can be adjusted (status is {submission.status})"
        )

    reason = (adjustment.reason or "").strip()
    if not reason:
        raise ScoreAdjustmentError("A reason is required to adjust a score")

    if adjustment.score < 0 or adjustment.score > submission.max_score:
        raise ScoreAdjustmentError(
            f"Score must be between 0 and {submission.max_score}"
        )

    if submission.original_score is None:
        submission.original_score = submission.score

    submission.score = adjustment.score
    submission.adjustment_reason = reason
    submission.adjusted_by_id = teacher.id
    submission.adjusted_at = datetime.now(timezone.utc)

    db.add(submission)
    db.commit()
    db.refresh(submission)
    return submission


def list_needing_review(
    db: Session,
    *,
    teacher: User,
    threshold: float,
    skip: int = 0,
    limit: int = 100,
) -> List[Submission]:
    """
    GRADED submissions in the teacher's classes with at least one question
    result below ``threshold`` confidence.
    """
    low_confidence = select(QuestionResult.submission_id).where(
        QuestionResult.confidence < threshold
    )

    return (
        db.query(Submission)
        .join(Assessment, Assessment.id == Submission.assessment_id)
        .join(Classroom, Classroom.id == Assessment.class_id)
        .filter(
            Classroom.teacher_id == teacher.id,
            Submission.status == SubmissionStatus.GRADED.value,
            Submission.id.in_(low_confidence),
        )
        .order_by(Submission.graded_at.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )
