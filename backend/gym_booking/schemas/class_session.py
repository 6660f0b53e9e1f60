"""
Pydantic schemas for class schedule request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ClassSessionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    coach_id: Optional[str] = Field(None, max_length=128)
    starts_at: datetime
    duration_minutes: int = Field(60, gt=0, le=600)
    max_capacity: int = Field(..., gt=0, le=1000)


class ClassSessionResponse(BaseModel):
    id: int
    title: str
    coach_id: Optional[str]
    starts_at: datetime
    duration_minutes: int
    max_capacity: int
    occupied_count: int
    available_seats: int
    is_full: bool

    model_config = {"from_attributes": True}


class ClassSessionListResponse(BaseModel):
    classes: list[ClassSessionResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False
