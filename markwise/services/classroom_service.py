# markwise/services/classroom_service.py
import secrets
import string
from typing import List, Optional

from sqlalchemy.orm import Session

from markwise.models.classroom import Classroom, Enrollment
from markwise.models.user import User
from markwise.schemas.classroom import ClassroomCreate

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


def generate_class_code(db: Session) -> str:
    while True:
        code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
        if db.query(Classroom.id).filter(Classroom.code == code).first() is None:
            return code


def create_classroom(db: Session, *, teacher: User, obj_in: ClassroomCreate) -> Classroom:
    db_obj = Classroom(
        name=obj_in.name,
        code=generate_class_code(db),
        teacher_id=teacher.id,
    )
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj


def get_classroom(db: Session, class_id: int) -> Optional[Classroom]:
    return db.get(Classroom, class_id)


def list_classrooms_for_teacher(
    db: Session,
    *,
    teacher: User,
    skip: int = 0,
    limit: int = 100,
) -> List[Classroom]:
    return (
        db.query(Classroom)
        .filter(Classroom.teacher_id == teacher.id)
        .order_by(Classroom.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_classrooms_for_student(
    db: Session,
    *,
    student: User,
    skip: int = 0,
    limit: int = 100,
) -> List[Classroom]:
    return (
        db.query(Classroom)
        .join(Enrollment, Enrollment.class_id == Classroom.id)
        .filter(Enrollment.student_id == student.id)
        .order_by(Enrollment.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def join_classroom(db: Session, *, student: User, code: str) -> Optional[Classroom]:
    """
    Enroll the student in the class with this join code.
    Joining a class twice is a no-op; returns None for an unknown code.
    """
    classroom = (
        db.query(Classroom)
        .filter(Classroom.code == code.strip().upper())
        .first()
    )
    if classroom is None:
        return None

    if not is_enrolled(db, class_id=classroom.id, student_id=student.id):
        db.add(Enrollment(class_id=classroom.id, student_id=student.id))
        db.commit()
        db.refresh(classroom)
    return classroom


def is_enrolled(db: Session, *, class_id: int, student_id: int) -> bool:
    return (
        db.query(Enrollment.id)
        .filter(Enrollment.class_id == class_id, Enrollment.student_id == student_id)
        .first()
        is not None
    )


def can_view_classroom(db: Session, *, user: User, classroom: Classroom) -> bool:
    if classroom.teacher_id == user.id:
        return True
    return is_enrolled(db, class_id=classroom.id, student_id=user.id)
