# markwise/schemas/auth.py
from typing import Literal

from pydantic import BaseModel, EmailStr, ConfigDict, Field


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    email: EmailStr | None = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str
    role: Literal["teacher", "student"]


class UserPublic(BaseModel):

    id: int
    email: EmailStr
    name: str
    role: str

    model_config = ConfigDict(from_attributes=True)
