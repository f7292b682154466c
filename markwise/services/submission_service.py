# markwise/services/submission_service.py
from typing import List, Optional

from sqlalchemy.orm import Session

from markwise.core.exceptions import (
    GradingInProgressError,
    PermissionDeniedError,
    SubmissionInputError,
    SubmissionStateError,
)
from markwise.models.assessment import Assessment, AssessmentStatus
from markwise.models.classroom import Classroom
from markwise.models.submission import Submission, SubmissionStatus
from markwise.models.user import ROLE_STUDENT, ROLE_TEACHER, User
from markwise.services.classroom_service import is_enrolled
from markwise.workers.queue import enqueue_grading_task


def get_submission(db: Session, submission_id: int) -> Optional[Submission]:
    return db.get(Submission, submission_id)


def _class_teacher_id(db: Session, assessment_id: int) -> Optional[int]:
    return (
        db.query(Classroom.teacher_id)
        .join(Assessment, Assessment.class_id == Classroom.id)
        .filter(Assessment.id == assessment_id)
        .scalar()
    )


def is_class_teacher(db: Session, *, user: User, submission: Submission) -> bool:
    return user.role == ROLE_TEACHER and _class_teacher_id(db, submission.assessment_id) == user.id


def can_view_submission(db: Session, *, user: User, submission: Submission) -> bool:
    if user.role == ROLE_STUDENT:
        return submission.student_id == user.id
    return is_class_teacher(db, user=user, submission=submission)


def check_upload_allowed(
    db: Session,
    *,
    caller: User,
    assessment_id: int,
    student_id: int,
) -> Assessment:
    """
    A student may upload their own work; the class teacher may upload on
    behalf of an enrolled student. The assessment must be ACTIVE.
    """
    assessment = db.get(Assessment, assessment_id)
    if assessment is None:
        raise SubmissionInputError(f"Assessment {assessment_id} not found")

    if caller.role == ROLE_STUDENT:
        if caller.id != student_id:
            raise PermissionDeniedError("Students can only submit their own work")
    elif _class_teacher_id(db, assessment_id) != caller.id:
        raise PermissionDeniedError("You do not teach this class")

    if not is_enrolled(db, class_id=assessment.class_id, student_id=student_id):
        raise PermissionDeniedError("Student is not enrolled in this class")

    if assessment.status != AssessmentStatus.ACTIVE.value:
        raise SubmissionInputError("Assessment is not accepting submissions")

    return assessment


def list_submissions_for_student(
    db: Session,
    *,
    student: User,
    skip: int = 0,
    limit: int = 100,
) -> List[Submission]:
    return (
        db.query(Submission)
        .filter(Submission.student_id == student.id)
        .order_by(Submission.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_submissions_for_assessment(
    db: Session,
    *,
    assessment_id: int,
    skip: int = 0,
    limit: int = 100,
) -> List[Submission]:
    return (
        db.query(Submission)
        .filter(Submission.assessment_id == assessment_id)
        .order_by(Submission.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def request_regrade(db: Session, *, teacher: User, submission: Submission) -> str:
    """
    Queue a regrade of a FAILED or PENDING submission, or of a GRADED one
    whose score was never adjusted. Returns the RQ job id.
    """
    if not is_class_teacher(db, user=teacher, submission=submission):
        raise PermissionDeniedError("Only the class teacher can request a regrade")

    if submission.status == SubmissionStatus.PROCESSING.value:
        raise GradingInProgressError(f"Submission {submission.id} is already being graded")
    if submission.original_score is not None:
        raise SubmissionStateError(
            "Submission has a teacher-adjusted score and cannot be regraded"
        )

    return enqueue_grading_task(submission.id, regrade=True)
