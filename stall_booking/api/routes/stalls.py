"""
Stall endpoints: public floor-plan reads with Redis caching, admin edits.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from stall_booking.api.deps import get_stall_service
from stall_booking.core.logging import get_logger
from stall_booking.core.security import require_admin
from stall_booking.domain.models import IdentityContext, StallSize, StallStatus
from stall_booking.schemas.reservation import MessageResponse
from stall_booking.schemas.stall import (
    StallCreate,
    StallListResponse,
    StallResponse,
    StallSizeCounts,
    StallStatisticsResponse,
    StallStatusCounts,
    StallUpdate,
)
from stall_booking.services.cache_service import (
    get_cached_stalls,
    invalidate_stall_cache,
    listing_generation,
    set_cached_stalls,
)
from stall_booking.services.stall_service import StallService

logger = get_logger(__name__)
router = APIRouter(prefix="/stalls", tags=["Stalls"])


async def _cached_listing(
    service: StallService,
    stall_status: Optional[StallStatus],
    size: Optional[StallSize],
) -> StallListResponse:
    status_key = stall_status.value if stall_status else None
    size_key = size.value if size else None

    # Captured before the read so a listing that races a booking is filed
    # under a retired generation
    generation = await listing_generation()
    cached = await get_cached_stalls(generation, status_key, size_key)
    if cached:
        logger.info("stall_list_cache_hit", status=status_key, size=size_key)
        cached["cached"] = True
        return StallListResponse(**cached)

    stalls = await service.list_stalls(status=stall_status, size=size)
    response_data = {
        "count": len(stalls),
        "stalls": [StallResponse.model_validate(s).model_dump(mode="json") for s in stalls],
        "cached": False,
    }
    await set_cached_stalls(generation, status_key, size_key, response_data)
    return StallListResponse(**response_data)


@router.get("/", response_model=StallListResponse)
async def list_stalls_endpoint(
    stall_status: Optional[StallStatus] = Query(None, alias="status"),
    size: Optional[StallSize] = Query(None),
    service: StallService = Depends(get_stall_service),
):
    """
    List stalls ordered by code, optionally filtered by status and size.
    Results are cached in Redis and invalidated on every booking change.
    """
    return await _cached_listing(service, stall_status, size)


@router.get("/available", response_model=StallListResponse)
async def list_available_stalls(service: StallService = Depends(get_stall_service)):
    """Stalls that can be reserved right now."""
    return await _cached_listing(service, StallStatus.AVAILABLE, None)


@router.get("/statistics", response_model=StallStatisticsResponse)
async def stall_statistics(
    identity: IdentityContext = Depends(require_admin),
    service: StallService = Depends(get_stall_service),
):
    """Occupancy overview for the organizer dashboard. Admin only."""
    stats = await service.get_statistics(identity)
    return StallStatisticsResponse(
        total=stats.total,
        by_status=StallStatusCounts(
            available=stats.available, reserved=stats.reserved, maintenance=stats.maintenance
        ),
        by_size=StallSizeCounts(small=stats.small, medium=stats.medium, large=stats.large),
    )


@router.get("/{stall_id}", response_model=StallResponse)
async def get_stall_endpoint(stall_id: str, service: StallService = Depends(get_stall_service)):
    """Get a single stall. Not cached (needs real-time status)."""
    return StallResponse.model_validate(await service.get_stall(stall_id))


@router.post("/", response_model=StallResponse, status_code=status.HTTP_201_CREATED)
async def create_stall_endpoint(
    stall_data: StallCreate,
    identity: IdentityContext = Depends(require_admin),
    service: StallService = Depends(get_stall_service),
):
    """Create a new AVAILABLE stall. Admin only."""
    stall = await service.create_stall(identity, **stall_data.model_dump())
    await invalidate_stall_cache()
    return StallResponse.model_validate(stall)


@router.put("/{stall_id}", response_model=StallResponse)
async def update_stall_endpoint(
    stall_id: str,
    stall_data: StallUpdate,
    identity: IdentityContext = Depends(require_admin),
    service: StallService = Depends(get_stall_service),
):
    """
    Edit stall metadata or toggle maintenance. Admin only.

    Maintenance is refused while the stall holds an active reservation.
    """
    stall = await service.update_stall(
        identity, stall_id, **stall_data.model_dump(exclude_unset=True)
    )
    await invalidate_stall_cache()
    return StallResponse.model_validate(stall)


@router.delete("/{stall_id}", response_model=MessageResponse)
async def delete_stall_endpoint(
    stall_id: str,
    identity: IdentityContext = Depends(require_admin),
    service: StallService = Depends(get_stall_service),
):
    """Delete a stall without active reservations. Admin only."""
    await service.delete_stall(identity, stall_id)
    await invalidate_stall_cache()
    return MessageResponse(message="Stall deleted successfully")
