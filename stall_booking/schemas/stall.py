"""
Pydantic schemas for stall-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from stall_booking.domain.models import StallSize, StallStatus


class StallCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50, examples=["A1"])
    size: StallSize
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    location: Optional[str] = Field(None, max_length=255)
    dimensions: Optional[str] = Field(None, max_length=100)


class StallUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    size: Optional[StallSize] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    location: Optional[str] = Field(None, max_length=255)
    dimensions: Optional[str] = Field(None, max_length=100)
    # AVAILABLE or MAINTENANCE; RESERVED is rejected by the service
    status: Optional[StallStatus] = None


class StallResponse(BaseModel):
    id: str
    code: str
    size: StallSize
    price: float
    status: StallStatus
    location: Optional[str]
    dimensions: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class StallListResponse(BaseModel):
    count: int
    stalls: list[StallResponse]
    cached: bool = False


class StallStatusCounts(BaseModel):
    available: int
    reserved: int
    maintenance: int


class StallSizeCounts(BaseModel):
    small: int
    medium: int
    large: int


class StallStatisticsResponse(BaseModel):
    total: int
    by_status: StallStatusCounts
    by_size: StallSizeCounts
