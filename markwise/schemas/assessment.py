# markwise/schemas/assessment.py
from pydantic import BaseModel, Field, model_validator
from datetime import datetime

from markwise.models.assessment import AssessmentStatus, Strictness


class CriterionIn(BaseModel):
    description: str = Field(min_length=1)
    marks: int = Field(ge=0)


class QuestionIn(BaseModel):
    label: str | None = Field(default=None, max_length=20)
    prompt: str = Field(min_length=1)
    max_marks: int = Field(gt=0)
    criteria: list[CriterionIn] = Field(default_factory=list)


class AssessmentCreate(BaseModel):
    class_id: int
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    strictness: Strictness = Strictness.FAIR
    # defaults to the sum of question maxima
    total_marks: int | None = Field(default=None, gt=0)
    questions: list[QuestionIn] = Field(min_length=1)

    @model_validator(mode="after")
    def total_covers_questions(self):
        if self.total_marks is not None:
            question_sum = sum(q.max_marks for q in self.questions)
            if self.total_marks < question_sum:
                raise ValueError(
                    f"total_marks ({self.total_marks}) is less than the sum of "
                    f"question maxima ({question_sum})"
                )
        return self


class QuestionsReplace(BaseModel):
    questions: list[QuestionIn] = Field(min_length=1)


class AssessmentStatusUpdate(BaseModel):
    status: AssessmentStatus


class CriterionPublic(BaseModel):
    id: int
    position: int
    description: str
    marks: int

    model_config = {"from_attributes": True}


class QuestionPublic(BaseModel):
    id: int
    sequence: int
    label: str
    prompt: str
    max_marks: int
    criteria: list[CriterionPublic] = []

    model_config = {"from_attributes": True}


class AssessmentPublic(BaseModel):
    id: int
    class_id: int
    title: str
    description: str | None = None
    strictness: str
    total_marks: int
    status: str
    has_mark_scheme_document: bool = False
    questions: list[QuestionPublic] = []
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
