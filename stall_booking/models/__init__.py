from stall_booking.models.user import User
from stall_booking.models.stall import Stall
from stall_booking.models.reservation import Reservation
from stall_booking.models.genre import Genre, ReservationGenre

__all__ = ["User", "Stall", "Reservation", "Genre", "ReservationGenre"]
