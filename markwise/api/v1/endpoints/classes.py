# markwise/api/v1/endpoints/classes.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from markwise.core.security import get_current_student, get_current_teacher, get_current_user
from markwise.db.session import get_db
from markwise.models.user import ROLE_TEACHER, User
from markwise.schemas.assessment import AssessmentPublic
from markwise.schemas.classroom import (
    ClassroomCreate,
    ClassroomDetail,
    ClassroomJoin,
    ClassroomPublic,
)
from markwise.services import assessment_service, classroom_service

router = APIRouter(prefix="/classes", tags=["classes"])


@router.post("/", response_model=ClassroomPublic, status_code=status.HTTP_201_CREATED)
def create_class(
    obj_in: ClassroomCreate,
    db: Session = Depends(get_db),
    current_teacher: User = Depends(get_current_teacher),
):
    return classroom_service.create_classroom(db, teacher=current_teacher, obj_in=obj_in)


@router.get("/mine", response_model=List[ClassroomPublic])
def list_my_classes(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    skip: int = 0,
    limit: int = 100,
):
    """
    Teachers see the classes they teach, students the classes they joined.
    """
    if current_user.role == ROLE_TEACHER:
        return classroom_service.list_classrooms_for_teacher(
            db, teacher=current_user, skip=skip, limit=limit
        )
    return classroom_service.list_classrooms_for_student(
        db, student=current_user, skip=skip, limit=limit
    )


@router.post("/join", response_model=ClassroomPublic)
def join_class(
    obj_in: ClassroomJoin,
    db: Session = Depends(get_db),
    current_student: User = Depends(get_current_student),
):
    classroom = classroom_service.join_classroom(db, student=current_student, code=obj_in.code)
    if classroom is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No class with this code",
        )
    return classroom


def _viewable_class(db: Session, class_id: int, user: User):
    classroom = classroom_service.get_classroom(db, class_id)
    if classroom is None or not classroom_service.can_view_classroom(
        db, user=user, classroom=classroom
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Class not found",
        )
    return classroom


@router.get("/{class_id}", response_model=ClassroomDetail)
def get_class(
    class_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _viewable_class(db, class_id, current_user)


@router.get("/{class_id}/assessments", response_model=List[AssessmentPublic])
def list_class_assessments(
    class_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    skip: int = 0,
    limit: int = 100,
):
    """
    Students do not see draft assessments.
    """
    classroom = _viewable_class(db, class_id, current_user)
    return assessment_service.list_assessments_for_class(
        db,
        class_id=class_id,
        include_drafts=classroom.teacher_id == current_user.id,
        skip=skip,
        limit=limit,
    )
