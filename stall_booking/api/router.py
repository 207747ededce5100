"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from stall_booking.api.routes import stalls, reservations, genres

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(stalls.router)
api_router.include_router(reservations.router)
api_router.include_router(genres.router)
