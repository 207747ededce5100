from stall_booking.schemas.user import UserSummary
from stall_booking.schemas.genre import GenreCreate, GenreUpdate, GenreResponse, GenreListResponse
from stall_booking.schemas.stall import (
    StallCreate, StallUpdate, StallResponse, StallListResponse, StallStatisticsResponse,
)
from stall_booking.schemas.reservation import (
    ReservationCreate, ReservationResponse, ReservationDetailResponse, ReservationListResponse,
    ReservationCancelResponse, ReservationStatisticsResponse, MessageResponse,
)

__all__ = [
    "UserSummary",
    "GenreCreate", "GenreUpdate", "GenreResponse", "GenreListResponse",
    "StallCreate", "StallUpdate", "StallResponse", "StallListResponse", "StallStatisticsResponse",
    "ReservationCreate", "ReservationResponse", "ReservationDetailResponse",
    "ReservationListResponse", "ReservationCancelResponse", "ReservationStatisticsResponse",
    "MessageResponse",
]
