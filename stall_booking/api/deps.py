"""
FastAPI dependency providers.

Tests override get_repository and get_notification_dispatcher to inject a
fresh in-memory arena and a recording notifier.
"""

from typing import Optional

from fastapi import Depends

from stall_booking.core.config import get_settings
from stall_booking.services.allocation_engine import AllocationEngine
from stall_booking.services.genre_service import GenreService
from stall_booking.services.interfaces.stores import Repository
from stall_booking.services.notification_service import NotificationDispatcher, build_dispatcher
from stall_booking.services.stall_service import StallService
from stall_booking.services.store_factory import get_repository

_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher(get_settings())
    return _dispatcher


async def drain_notifications() -> None:
    if _dispatcher is not None:
        await _dispatcher.drain()


def get_allocation_engine(
    repository: Repository = Depends(get_repository),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> AllocationEngine:
    return AllocationEngine(repository, dispatcher, quota=get_settings().RESERVATION_QUOTA)


def get_stall_service(repository: Repository = Depends(get_repository)) -> StallService:
    return StallService(repository)


def get_genre_service(repository: Repository = Depends(get_repository)) -> GenreService:
    return GenreService(repository)
