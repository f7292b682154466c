# markwise/api/v1/endpoints/scores.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from markwise.api.deps import http_error
from markwise.core.config import settings
from markwise.core.exceptions import MarkwiseError
from markwise.core.security import get_current_teacher
from markwise.db.session import get_db
from markwise.models.submission import Submission
from markwise.models.user import User
from markwise.schemas.score import ScoreAdjustment, ScorePublic
from markwise.schemas.submission import SubmissionDetail
from markwise.services import scoring_service

router = APIRouter(prefix="/scores", tags=["scores"])


def _submission_to_score_public(sub: Submission) -> ScorePublic:
    return ScorePublic(
        submission_id=sub.id,
        status=sub.status,
        score=sub.score,
        max_score=sub.max_score,
        original_score=sub.original_score,
        adjusted_by_id=sub.adjusted_by_id,
        adjustment_reason=sub.adjustment_reason,
        adjusted_at=sub.adjusted_at,
    )


@router.get("/review", response_model=List[SubmissionDetail])
def list_needing_review(
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
    skip: int = 0,
    limit: int = 100,
):
    """
    Graded submissions with a low-confidence question, oldest first.
    """
    return scoring_service.list_needing_review(
        db,
        teacher=current_teacher,
        threshold=settings.LOW_CONFIDENCE_THRESHOLD,
        skip=skip,
        limit=limit,
    )


@router.post("/{submission_id}/adjust", response_model=ScorePublic)
def adjust_score(
    submission_id: int,
    adjustment: ScoreAdjustment,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    if db.get(Submission, submission_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Submission not found",
        )
    try:
        sub = scoring_service.adjust_submission_score(
            db,
            submission_id=submission_id,
            teacher=current_teacher,
            adjustment=adjustment,
        )
    except MarkwiseError as e:
        raise http_error(e)
    return _submission_to_score_public(sub)
