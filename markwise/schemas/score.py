# markwise/schemas/score.py
from pydantic import BaseModel
from datetime import datetime


class ScoreAdjustment(BaseModel):
    """Teacher override; range and reason are checked by the ledger."""
    score: int
    reason: str


class ScorePublic(BaseModel):
    submission_id: int
    status: str
    score: int | None = None
    max_score: int
    original_score: int | None = None
    adjusted_by_id: int | None = None
    adjustment_reason: str | None = None
    adjusted_at: datetime | None = None
