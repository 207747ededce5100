"""
Genre catalogue: public reads, admin-only edits.
"""

from typing import Optional

from stall_booking.core.logging import get_logger
from stall_booking.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from stall_booking.domain.models import Genre, IdentityContext
from stall_booking.services.interfaces.stores import Repository

logger = get_logger(__name__)


def _require_admin(identity: IdentityContext) -> None:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValidationError("Genre name cannot be empty")
    return name


class GenreService:
    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    async def list_genres(self) -> list[Genre]:
        async with self.repository.unit_of_work() as uow:
            return await uow.genres.list()

    async def get_genre(self, genre_id: str) -> Genre:
        async with self.repository.unit_of_work() as uow:
            genre = await uow.genres.get(genre_id)
        if genre is None:
            raise NotFoundError("Genre", genre_id)
        return genre

    async def create_genre(
        self,
        identity: IdentityContext,
        name: str,
        description: Optional[str] = None,
    ) -> Genre:
        _require_admin(identity)
        name = _clean_name(name)

        async with self.repository.unit_of_work() as uow:
            if await uow.genres.get_by_name(name) is not None:
                raise ConflictError(f"Genre '{name}' already exists")
            genre = await uow.genres.add(name, description)

        logger.info("genre_created", genre_id=genre.id, name=genre.name)
        return genre

    async def update_genre(
        self,
        identity: IdentityContext,
        genre_id: str,
        name: Optional[str] = None,
        **fields,
    ) -> Genre:
        """
        Rename a genre or change its description.

        Omitted fields are left alone; description may be cleared with None.
        """
        _require_admin(identity)
        if name is not None:
            fields["name"] = _clean_name(name)

        async with self.repository.unit_of_work() as uow:
            genre = await uow.genres.get(genre_id)
            if genre is None:
                raise NotFoundError("Genre", genre_id)

            new_name = fields.get("name")
            if new_name is not None and new_name != genre.name:
                if await uow.genres.get_by_name(new_name) is not None:
                    raise ConflictError(f"Genre '{new_name}' already exists")
            if fields:
                genre = await uow.genres.update(genre_id, **fields)

        logger.info("genre_updated", genre_id=genre_id, fields=sorted(fields))
        return genre

    async def delete_genre(self, identity: IdentityContext, genre_id: str) -> None:
        """Delete a genre; reservations tagged with it simply lose the tag."""
        _require_admin(identity)
        async with self.repository.unit_of_work() as uow:
            genre = await uow.genres.get(genre_id)
            if genre is None:
                raise NotFoundError("Genre", genre_id)
            await uow.genres.delete(genre_id)

        logger.info("genre_deleted", genre_id=genre_id, name=genre.name)
