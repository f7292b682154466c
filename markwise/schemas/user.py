# markwise/schemas/user.py
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime


class UserBase(BaseModel):
    email: EmailStr
    name: str
    role: str  # "teacher" / "student"


class UserUpdate(BaseModel):
    name: str | None = None
    password: str | None = Field(default=None, min_length=8)


class UserPublic(UserBase):
    id: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
