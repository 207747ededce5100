"""
Pydantic schemas for the genre catalogue.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class GenreCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Fiction"])
    description: Optional[str] = Field(None, max_length=1000)


class GenreUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)


class GenreResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class GenreListResponse(BaseModel):
    count: int
    genres: list[GenreResponse]
