"""
Canteen Service - Student schemas
"""
from datetime import datetime

from pydantic import BaseModel, Field


class StudentCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: str = Field(..., min_length=1, max_length=128)
    grade: str = Field(..., min_length=1, max_length=32, examples=["Grade 3"])
    allergies: str | None = None
    dietary_restrictions: str | None = None
    parent_id: str | None = None


class StudentUpdate(BaseModel):
    first_name: str | None = Field(None, min_length=1, max_length=128)
    last_name: str | None = Field(None, min_length=1, max_length=128)
    grade: str | None = Field(None, min_length=1, max_length=32)
    allergies: str | None = None
    dietary_restrictions: str | None = None
    is_active: bool | None = None


class StudentLink(BaseModel):
    parent_id: str


class StudentResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    first_name: str
    last_name: str
    full_name: str
    grade: str
    parent_id: str | None
    allergies: str | None
    dietary_restrictions: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime | None
