# markwise/schemas/classroom.py
from pydantic import BaseModel, Field
from datetime import datetime


class ClassroomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class ClassroomJoin(BaseModel):
    code: str = Field(min_length=1, max_length=16)


class ClassroomPublic(BaseModel):
    id: int
    name: str
    code: str
    teacher_id: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ClassroomDetail(ClassroomPublic):
    student_count: int = 0
