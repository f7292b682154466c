# markwise/api/v1/endpoints/submissions.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from markwise.api.deps import get_pipeline, http_error
from markwise.core.exceptions import MarkwiseError
from markwise.core.security import get_current_student, get_current_teacher, get_current_user
from markwise.db.session import get_db
from markwise.models.submission import SubmissionStatus
from markwise.models.user import ROLE_STUDENT, User
from markwise.schemas.submission import (
    SubmissionDetail,
    SubmissionPublic,
    SubmissionUploadResult,
)
from markwise.services import assessment_service, submission_service
from markwise.services.grading_pipeline import SubmissionPipeline
from markwise.services.text_extraction import PageImage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/submissions", tags=["submissions"])


@router.post(
    "/upload",
    response_model=SubmissionUploadResult,
    status_code=status.HTTP_201_CREATED,
)
async def upload_submission(
    files: List[UploadFile] = File(...),
    assessment_id: int = Form(...),
    student_id: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
):
    """
    Upload answer-sheet pages (images or a PDF) and grade them right away.

    Students submit for themselves; the class teacher may upload for an
    enrolled student by passing ``student_id``. A previous submission for
    the same assessment is replaced.
    """
    if student_id is None:
        if current_user.role != ROLE_STUDENT:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="student_id is required",
            )
        student_id = current_user.id

    try:
        await run_in_threadpool(
            submission_service.check_upload_allowed,
            db,
            caller=current_user,
            assessment_id=assessment_id,
            student_id=student_id,
        )
        pages = [
            PageImage(
                await f.read(),
                f.content_type or "application/octet-stream",
                f.filename,
            )
            for f in files
        ]
        outcome = await pipeline.submit(assessment_id, student_id, pages)
    except MarkwiseError as e:
        raise http_error(e)

    if outcome.status == SubmissionStatus.FAILED.value:
        logger.warning(f"Submission {outcome.submission_id} failed: {outcome.error_reason}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "submission_id": outcome.submission_id,
                "error": outcome.error_reason,
            },
        )

    return SubmissionUploadResult(
        submission_id=outcome.submission_id,
        status=outcome.status,
        score=outcome.score,
        max_score=outcome.max_score,
        error_reason=outcome.error_reason,
    )


@router.get("/me", response_model=List[SubmissionPublic])
def list_my_submissions(
    db: Session = Depends(get_db),
    current_student: User = Depends(get_current_student),
    skip: int = 0,
    limit: int = 100,
):
    return submission_service.list_submissions_for_student(
        db, student=current_student, skip=skip, limit=limit
    )


@router.get("/assessment/{assessment_id}", response_model=List[SubmissionDetail])
def list_submissions_for_assessment(
    assessment_id: int,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
    skip: int = 0,
    limit: int = 100,
):
    assessment = assessment_service.get_assessment(db, assessment_id)
    if assessment is None or not assessment_service.teacher_owns_assessment(
        db, teacher=current_teacher, assessment=assessment
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment not found",
        )
    return submission_service.list_submissions_for_assessment(
        db, assessment_id=assessment_id, skip=skip, limit=limit
    )


def _viewable_or_404(db: Session, submission_id: int, user: User):
    sub = submission_service.get_submission(db, submission_id)
    if not sub or not submission_service.can_view_submission(db, user=user, submission=sub):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Submission not found",
        )
    return sub


@router.get("/{submission_id}", response_model=SubmissionPublic)
def get_submission(
    submission_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _viewable_or_404(db, submission_id, current_user)


@router.get("/{submission_id}/detail", response_model=SubmissionDetail)
def get_submission_detail(
    submission_id: int,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    """
    Teacher view: adds the extracted transcript and the adjustment history.
    """
    return _viewable_or_404(db, submission_id, current_teacher)


@router.post("/{submission_id}/regrade", status_code=status.HTTP_202_ACCEPTED)
def regrade_submission(
    submission_id: int,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    sub = _viewable_or_404(db, submission_id, current_teacher)
    try:
        job_id = submission_service.request_regrade(db, teacher=current_teacher, submission=sub)
    except MarkwiseError as e:
        raise http_error(e)
    return {"submission_id": sub.id, "job_id": job_id}
