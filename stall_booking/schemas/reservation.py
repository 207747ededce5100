"""
Pydantic schemas for reservation-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from stall_booking.domain.models import ReservationStatus
from stall_booking.schemas.genre import GenreResponse
from stall_booking.schemas.stall import StallResponse
from stall_booking.schemas.user import UserSummary


class ReservationCreate(BaseModel):
    stall_id: str = Field(..., min_length=1, max_length=36)
    total_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    genre_ids: list[str] = Field(default_factory=list, max_length=20)


class ReservationResponse(BaseModel):
    id: str
    user_id: str
    stall_id: str
    total_amount: float
    status: ReservationStatus
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    stall: Optional[StallResponse] = None
    genres: list[GenreResponse] = []

    model_config = {"from_attributes": True}


class ReservationDetailResponse(ReservationResponse):
    user: UserSummary


class ReservationListResponse(BaseModel):
    count: int
    reservations: list[ReservationResponse]


class ReservationCancelResponse(BaseModel):
    message: str
    reservation: ReservationResponse


class ReservationStatusCounts(BaseModel):
    pending: int
    confirmed: int
    cancelled: int


class ReservationStatisticsResponse(BaseModel):
    total: int
    by_status: ReservationStatusCounts
    total_revenue: float


class MessageResponse(BaseModel):
    message: str
