"""
Genre catalogue endpoints: public reads, admin edits.
"""

from fastapi import APIRouter, Depends, status

from stall_booking.api.deps import get_genre_service
from stall_booking.core.security import require_admin
from stall_booking.domain.models import IdentityContext
from stall_booking.schemas.genre import GenreCreate, GenreListResponse, GenreResponse, GenreUpdate
from stall_booking.schemas.reservation import MessageResponse
from stall_booking.services.genre_service import GenreService

router = APIRouter(prefix="/genres", tags=["Genres"])


@router.get("/", response_model=GenreListResponse)
async def list_genres_endpoint(service: GenreService = Depends(get_genre_service)):
    """Every genre, alphabetically."""
    genres = await service.list_genres()
    return GenreListResponse(
        count=len(genres), genres=[GenreResponse.model_validate(g) for g in genres]
    )


@router.get("/{genre_id}", response_model=GenreResponse)
async def get_genre_endpoint(genre_id: str, service: GenreService = Depends(get_genre_service)):
    return GenreResponse.model_validate(await service.get_genre(genre_id))


@router.post("/", response_model=GenreResponse, status_code=status.HTTP_201_CREATED)
async def create_genre_endpoint(
    genre_data: GenreCreate,
    identity: IdentityContext = Depends(require_admin),
    service: GenreService = Depends(get_genre_service),
):
    """Add a genre. Names are unique (409 on a duplicate). Admin only."""
    genre = await service.create_genre(identity, genre_data.name, genre_data.description)
    return GenreResponse.model_validate(genre)


@router.put("/{genre_id}", response_model=GenreResponse)
async def update_genre_endpoint(
    genre_id: str,
    genre_data: GenreUpdate,
    identity: IdentityContext = Depends(require_admin),
    service: GenreService = Depends(get_genre_service),
):
    genre = await service.update_genre(
        identity, genre_id, **genre_data.model_dump(exclude_unset=True)
    )
    return GenreResponse.model_validate(genre)


@router.delete("/{genre_id}", response_model=MessageResponse)
async def delete_genre_endpoint(
    genre_id: str,
    identity: IdentityContext = Depends(require_admin),
    service: GenreService = Depends(get_genre_service),
):
    """Delete a genre and untag every reservation that used it. Admin only."""
    await service.delete_genre(identity, genre_id)
    return MessageResponse(message="Genre deleted successfully")
