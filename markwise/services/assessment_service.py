# markwise/services/assessment_service.py
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from markwise.core.exceptions import PermissionDeniedError, SubmissionStateError
from markwise.models.assessment import (
    Assessment,
    AssessmentStatus,
    MarkSchemePoint,
    Question,
)
from markwise.models.classroom import Classroom
from markwise.models.submission import Submission
from markwise.models.user import User
from markwise.schemas.assessment import AssessmentCreate, QuestionIn

# DRAFT -> ACTIVE -> CLOSED, and a closed assessment may be reopened
ALLOWED_TRANSITIONS = {
    AssessmentStatus.DRAFT.value: {AssessmentStatus.ACTIVE.value, AssessmentStatus.CLOSED.value},
    AssessmentStatus.ACTIVE.value: {AssessmentStatus.CLOSED.value},
    AssessmentStatus.CLOSED.value: {AssessmentStatus.ACTIVE.value},
}


def _build_questions(questions_in: Sequence[QuestionIn]) -> List[Question]:
    questions = []
    for sequence, q in enumerate(questions_in, 1):
        questions.append(
            Question(
                sequence=sequence,
                label=(q.label or str(sequence)).strip(),
                prompt=q.prompt,
                max_marks=q.max_marks,
                criteria=[
                    MarkSchemePoint(position=position, description=c.description, marks=c.marks)
                    for position, c in enumerate(q.criteria)
                ],
            )
        )
    return questions


def _owned_classroom(db: Session, *, teacher: User, class_id: int) -> Classroom:
    classroom = db.get(Classroom, class_id)
    if classroom is None or classroom.teacher_id != teacher.id:
        raise PermissionDeniedError("You do not teach this class")
    return classroom


def teacher_owns_assessment(db: Session, *, teacher: User, assessment: Assessment) -> bool:
    classroom = db.get(Classroom, assessment.class_id)
    return classroom is not None and classroom.teacher_id == teacher.id


def create_assessment(db: Session, *, teacher: User, obj_in: AssessmentCreate) -> Assessment:
    """
    Create an assessment with its questions and mark-scheme criteria.
    Total marks default to the sum of the question maxima.
    """
    _owned_classroom(db, teacher=teacher, class_id=obj_in.class_id)

    questions = _build_questions(obj_in.questions)
    db_obj = Assessment(
        class_id=obj_in.class_id,
        title=obj_in.title,
        description=obj_in.description,
        strictness=obj_in.strictness.value,
        total_marks=obj_in.total_marks or sum(q.max_marks for q in questions),
        status=AssessmentStatus.DRAFT.value,
        questions=questions,
    )
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj


def get_assessment(db: Session, assessment_id: int) -> Optional[Assessment]:
    return db.get(Assessment, assessment_id)


def list_assessments_for_class(
    db: Session,
    *,
    class_id: int,
    include_drafts: bool = True,
    skip: int = 0,
    limit: int = 100,
) -> List[Assessment]:
    query = db.query(Assessment).filter(Assessment.class_id == class_id)
    if not include_drafts:
        query = query.filter(Assessment.status != AssessmentStatus.DRAFT.value)
    return (
        query.order_by(Assessment.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def has_submissions(db: Session, assessment_id: int) -> bool:
    return (
        db.query(Submission.id)
        .filter(Submission.assessment_id == assessment_id)
        .first()
        is not None
    )


def update_status(
    db: Session,
    *,
    teacher: User,
    db_obj: Assessment,
    status: AssessmentStatus,
) -> Assessment:
    _owned_classroom(db, teacher=teacher, class_id=db_obj.class_id)

    if status.value == db_obj.status:
        return db_obj
    if status.value not in ALLOWED_TRANSITIONS.get(db_obj.status, set()):
        raise SubmissionStateError(
            f"Assessment cannot move from {db_obj.status} to {status.value}"
        )

    db_obj.status = status.value
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj


def replace_questions(
    db: Session,
    *,
    teacher: User,
    db_obj: Assessment,
    questions_in: Sequence[QuestionIn],
) -> Assessment:
    """
    Replace the question structure; total marks become the new sum of
    question maxima. Refused once any submission exists.
    """
    _owned_classroom(db, teacher=teacher, class_id=db_obj.class_id)

    if has_submissions(db, db_obj.id):
        raise SubmissionStateError(
            "Questions cannot change after students have submitted"
        )

    db_obj.questions.clear()
    db.flush()
    questions = _build_questions(questions_in)
    db_obj.questions.extend(questions)
    db_obj.total_marks = sum(q.max_marks for q in questions)

    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj
