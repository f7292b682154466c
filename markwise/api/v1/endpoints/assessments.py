# markwise/api/v1/endpoints/assessments.py
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from markwise.api.deps import get_pipeline, http_error
from markwise.core.exceptions import MarkwiseError
from markwise.core.security import get_current_teacher, get_current_user
from markwise.db.session import get_db
from markwise.models.assessment import AssessmentStatus
from markwise.models.user import User
from markwise.schemas.assessment import (
    AssessmentCreate,
    AssessmentPublic,
    AssessmentStatusUpdate,
    QuestionsReplace,
)
from markwise.services import assessment_service, classroom_service
from markwise.services.grading_pipeline import SubmissionPipeline
from markwise.services.text_extraction import PDF_MIME_TYPE

router = APIRouter(prefix="/assessments", tags=["assessments"])


def _get_or_404(db: Session, assessment_id: int):
    assessment = assessment_service.get_assessment(db, assessment_id)
    if assessment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment not found",
        )
    return assessment


def _owned_or_404(db: Session, assessment_id: int, teacher: User):
    assessment = _get_or_404(db, assessment_id)
    if not assessment_service.teacher_owns_assessment(db, teacher=teacher, assessment=assessment):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment not found",
        )
    return assessment


@router.post("/", response_model=AssessmentPublic, status_code=status.HTTP_201_CREATED)
def create_assessment(
    obj_in: AssessmentCreate,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    try:
        return assessment_service.create_assessment(db, teacher=current_teacher, obj_in=obj_in)
    except MarkwiseError as e:
        raise http_error(e)


@router.get("/{assessment_id}", response_model=AssessmentPublic)
def get_assessment(
    assessment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    assessment = _get_or_404(db, assessment_id)
    classroom = classroom_service.get_classroom(db, assessment.class_id)
    if classroom.teacher_id == current_user.id:
        return assessment
    if (
        assessment.status == AssessmentStatus.DRAFT.value
        or not classroom_service.is_enrolled(
            db, class_id=classroom.id, student_id=current_user.id
        )
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment not found",
        )
    return assessment


@router.patch("/{assessment_id}/status", response_model=AssessmentPublic)
def change_status(
    assessment_id: int,
    obj_in: AssessmentStatusUpdate,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    assessment = _owned_or_404(db, assessment_id, current_teacher)
    try:
        return assessment_service.update_status(
            db, teacher=current_teacher, db_obj=assessment, status=obj_in.status
        )
    except MarkwiseError as e:
        raise http_error(e)


@router.put("/{assessment_id}/questions", response_model=AssessmentPublic)
def replace_questions(
    assessment_id: int,
    obj_in: QuestionsReplace,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    assessment = _owned_or_404(db, assessment_id, current_teacher)
    try:
        return assessment_service.replace_questions(
            db, teacher=current_teacher, db_obj=assessment, questions_in=obj_in.questions
        )
    except MarkwiseError as e:
        raise http_error(e)


@router.post("/{assessment_id}/mark-scheme", response_model=AssessmentPublic)
async def upload_mark_scheme(
    assessment_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
):
    """
    Extract a mark-scheme PDF once; the AI grader gets its text as reference.
    """
    await run_in_threadpool(_owned_or_404, db, assessment_id, current_teacher)
    if file.content_type != PDF_MIME_TYPE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Mark scheme must be a PDF",
        )

    buffer = await file.read()
    try:
        await pipeline.extract_mark_scheme(assessment_id, buffer)
    except MarkwiseError as e:
        raise http_error(e)

    assessment = await run_in_threadpool(_get_or_404, db, assessment_id)
    await run_in_threadpool(db.refresh, assessment)
    return assessment
