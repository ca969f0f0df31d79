# models/rating.py
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional


class RatingCreate(BaseModel):
    trip_id: str
    rated_user_id: str
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None


class RatingOut(BaseModel):
    id: str
    trip_id: str
    rater_id: str
    rater_name: str
    rated_user_role: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime
