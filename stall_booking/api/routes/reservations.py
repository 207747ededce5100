"""
Reservation endpoints backed by the allocation engine.
"""

from fastapi import APIRouter, Depends, status

from stall_booking.api.deps import get_allocation_engine
from stall_booking.core.logging import get_logger
from stall_booking.core.security import get_current_identity, require_admin
from stall_booking.domain.models import IdentityContext
from stall_booking.schemas.reservation import (
    MessageResponse,
    ReservationCancelResponse,
    ReservationCreate,
    ReservationDetailResponse,
    ReservationListResponse,
    ReservationResponse,
    ReservationStatisticsResponse,
    ReservationStatusCounts,
)
from stall_booking.schemas.user import UserSummary
from stall_booking.services.allocation_engine import AllocationEngine
from stall_booking.services.cache_service import invalidate_stall_cache

logger = get_logger(__name__)
router = APIRouter(prefix="/reservations", tags=["Reservations"])


def _listing(reservations) -> ReservationListResponse:
    return ReservationListResponse(
        count=len(reservations),
        reservations=[ReservationResponse.model_validate(r) for r in reservations],
    )


@router.post("/", response_model=ReservationDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    reservation_data: ReservationCreate,
    identity: IdentityContext = Depends(get_current_identity),
    engine: AllocationEngine = Depends(get_allocation_engine),
):
    """
    Reserve a stall.

    Exactly one of many simultaneous requests for the same stall succeeds;
    the rest get 409 and should pick another stall. A caller holding the
    maximum number of active reservations gets 400. Unknown genre IDs give 404.
    """
    reservation = await engine.reserve(
        identity,
        reservation_data.stall_id,
        reservation_data.total_amount,
        genre_ids=reservation_data.genre_ids,
    )
    # Listing shows the stall as RESERVED now
    await invalidate_stall_cache()

    body = ReservationResponse.model_validate(reservation).model_dump()
    return ReservationDetailResponse(
        **body,
        user=UserSummary(
            id=identity.user_id,
            role=identity.role,
            email=identity.email,
            name=identity.name,
            business_name=identity.business_name,
        ),
    )


@router.get("/my-reservations", response_model=ReservationListResponse)
async def list_my_reservations(
    identity: IdentityContext = Depends(get_current_identity),
    engine: AllocationEngine = Depends(get_allocation_engine),
):
    """All reservations of the authenticated user, newest first."""
    return _listing(await engine.list_my_reservations(identity))


@router.get("/statistics", response_model=ReservationStatisticsResponse)
async def reservation_statistics(
    identity: IdentityContext = Depends(require_admin),
    engine: AllocationEngine = Depends(get_allocation_engine),
):
    """Counts by status and revenue from CONFIRMED reservations. Admin only."""
    stats = await engine.get_statistics(identity)
    return ReservationStatisticsResponse(
        total=stats.total,
        by_status=ReservationStatusCounts(
            pending=stats.pending, confirmed=stats.confirmed, cancelled=stats.cancelled
        ),
        total_revenue=stats.total_revenue,
    )


@router.get("/", response_model=ReservationListResponse)
async def list_all_reservations(
    identity: IdentityContext = Depends(require_admin),
    engine: AllocationEngine = Depends(get_allocation_engine),
):
    """Every reservation. Admin only."""
    return _listing(await engine.list_all_reservations(identity))


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: str,
    identity: IdentityContext = Depends(get_current_identity),
    engine: AllocationEngine = Depends(get_allocation_engine),
):
    """A single reservation; visible to its owner and to admins."""
    return ReservationResponse.model_validate(await engine.get_reservation(identity, reservation_id))


@router.put("/{reservation_id}/cancel", response_model=ReservationCancelResponse)
async def cancel_reservation(
    reservation_id: str,
    identity: IdentityContext = Depends(get_current_identity),
    engine: AllocationEngine = Depends(get_allocation_engine),
):
    """Cancel a reservation and release the stall. Cancelling twice returns 409."""
    reservation = await engine.cancel(identity, reservation_id)
    await invalidate_stall_cache()
    return ReservationCancelResponse(
        message="Reservation cancelled successfully",
        reservation=ReservationResponse.model_validate(reservation),
    )


@router.post("/{reservation_id}/send-confirmation", response_model=MessageResponse)
async def resend_confirmation(
    reservation_id: str,
    identity: IdentityContext = Depends(get_current_identity),
    engine: AllocationEngine = Depends(get_allocation_engine),
):
    """Send the confirmation (with the reservation ID as pass token) again."""
    await engine.resend_confirmation(identity, reservation_id)
    recipient = identity.email or identity.user_id
    return MessageResponse(message=f"Confirmation sent to {recipient}")
